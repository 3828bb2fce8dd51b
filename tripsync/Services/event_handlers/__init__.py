# tripsync/Services/event_handlers/__init__.py
"""
Event Handlers Module
=====================
Manejadores usados por el orquestador de sincronización.

Componentes:
- trip_handler: métricas de trip y persistencia de resultados de segmentación
- persistence_handler: normalización y upsert de lotes de posiciones

Arquitectura:
- Handlers reciben inputs explícitos
- Ninguno hace commit: la transacción la controla el orquestador
"""

from .trip_handler import (
    calculate_haversine_distance,
    calculate_trip_distance,
    calculate_trip_metrics,
    handle_trip_persistence
)
from .persistence_handler import normalize_batch, persist_positions

__all__ = [
    # Trip handler
    'calculate_haversine_distance',
    'calculate_trip_distance',
    'calculate_trip_metrics',
    'handle_trip_persistence',

    # Persistence handler
    'normalize_batch',
    'persist_positions',
]
