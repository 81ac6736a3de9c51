"""Entrypoint: python -m smsrelay"""

import uvicorn

from smsrelay.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "smsrelay.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
