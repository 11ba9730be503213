#!/usr/bin/env python3
"""
Exemplo de uso do Aiko Monitor com FastAPI.

Este exemplo demonstra como:
1. Carregar a configuração do ambiente (AIKO_MONITOR_*) ou de um YAML
2. Instrumentar a aplicação com o MonitorMiddleware
3. Drenar os eventos pendentes no shutdown da aplicação

Executar:
    AIKO_MONITOR_PROJECT_KEY=pk_... AIKO_MONITOR_SECRET_KEY=... \\
    AIKO_MONITOR_ENDPOINT=http://localhost:8080/api/monitor/ingest \\
    python examples/fastapi_store.py
"""

import os
import time
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse

from aiko_monitor import Monitor, MonitorMiddleware, load_settings
from aiko_monitor.log_config import configure_from_settings

settings = load_settings(os.getenv("AIKO_MONITOR_CONFIG"))
configure_from_settings(settings)
logger = structlog.get_logger(__name__)

monitor = Monitor(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    drained = monitor.shutdown(timeout=10)
    logger.info("Eventos pendentes drenados", drained=drained, **monitor.get_stats())


app = FastAPI(title="Aiko Monitor Store Example", lifespan=lifespan)
app.add_middleware(MonitorMiddleware, monitor=monitor)


@app.get("/", response_class=HTMLResponse)
async def home():
    return "<html><body><h1>E-commerce API</h1><p>Welcome to our store!</p></body></html>"


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0", "secret": "hi"}


@app.post("/auth/login")
async def login(request: Request):
    body = await request.json()
    if body.get("username") == "user" and body.get("password") == "pass":
        return {
            "token": "jwt_token_123",
            "user_id": "user123",
            "ipv4": "203.0.113.10",
            "ipv6": "2001:0db8:85a3:0000:0000:8a2e:0370:7334",
            "timestamp": int(time.time()),
        }
    raise HTTPException(status_code=401, detail="Invalid credentials")


@app.post("/auth/register")
async def register(request: Request):
    body = await request.json()
    return {
        "message": f"User {body.get('username')} registered successfully",
        "user_id": "user456",
        "email": body.get("email"),
    }


@app.get("/users/{user_id}")
async def get_user(user_id: str):
    return {"id": user_id, "name": "Ana", "email": "ana@example.com", "phonenumber": "+55 11 99999-0000"}


@app.get("/search")
async def search(q: str = ""):
    return {"query": q, "results": [{"id": 1, "name": "Notebook"}, {"id": 2, "name": "Mouse"}]}


@app.get("/error")
async def error_route():
    raise RuntimeError("Something went wrong")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
