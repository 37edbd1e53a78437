"""API server entry point for python -m mvstudio.api"""
import uvicorn
from mvstudio.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "mvstudio.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
