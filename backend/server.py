import uvicorn

from smartbudget.core.config import settings

if __name__ == "__main__":
    uvicorn.run("smartbudget.main:app", host=settings.host, port=settings.port, log_config=None)
