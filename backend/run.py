"""Start the BizFlow API server (uvicorn) with the project .env loaded"""
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# .env must be loaded before bizflow settings are first read
load_dotenv(BASE_DIR / ".env", override=True)

os.chdir(Path(__file__).resolve().parent)


def main():
    import uvicorn

    from bizflow.core.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "bizflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        access_log=settings.log_uvicorn_access,
        reload=False,
    )


if __name__ == "__main__":
    main()
