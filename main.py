import uvicorn

from portal.config import settings
from portal.main import configure_logging, create_app

configure_logging(settings)
app = create_app(settings)

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
