"""
TinyChat Server Entry Point

Run with: python main.py
Or with uvicorn: uvicorn main:app --reload
"""

import os

import uvicorn

from tinychat.api.app import create_app

app = create_app()

if __name__ == "__main__":
    # Use reload only in development
    is_dev = os.getenv("ENVIRONMENT", "development") == "development"

    uvicorn.run(
        "main:app",
        host=os.getenv("TINYCHAT_HOST", "0.0.0.0"),
        port=int(os.getenv("TINYCHAT_PORT", "8000")),
        reload=is_dev,  # Only reload in development
        log_level="info",
    )
