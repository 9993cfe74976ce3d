from mangum import Mangum

from settlement.api import create_app
from settlement.config import get_settings

settings = get_settings()
if not settings.api_root_path:
    settings = settings.model_copy(update={"api_root_path": "/api"})

app = create_app(settings=settings)

handler = Mangum(app)
