# src/services/__init__.py
"""
Сервисы приложения.

Архитектура:
- Каждый сервис — независимое FastAPI-приложение
- Состояние водителей хранится в памяти процесса
- События публикуются в RabbitMQ (диспетчер) и Redis Pub/Sub (realtime)

Сервисы:
- driver_location: приём геолокации, доступность, поиск ближайших водителей
"""

__all__: list[str] = []
