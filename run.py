"""
Startup script for the Atlas subscription API
Reads HOST/PORT from settings and starts uvicorn server
"""
import uvicorn
from app.core.config import settings
from app.main import app

if __name__ == "__main__":
    print(f"🚀 Starting Atlas subscription server...")
    print(f"📍 Binding to {settings.host}:{settings.port}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
