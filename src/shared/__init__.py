# src/shared/__init__.py
"""
Общий код сервиса геолокации.

Модули:
- events: схемы исходящих событий (RabbitMQ, Redis Pub/Sub)
- models: DTO и Pydantic-модели домена и HTTP API
"""

__all__: list[str] = []
