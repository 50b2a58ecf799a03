# backend/main.py - service index
# uvicorn main:app --host 0.0.0.0 --port 20009 --reload
from fastapi import FastAPI

from common.constants import SERVICES

app = FastAPI(title="Service Index", version="1.0.0")


@app.get("/")
async def index():
    return {
        "services": {
            name: f"http://127.0.0.1:{port}/docs" for name, (_module, port) in SERVICES.items()
        }
    }
