"""
Domain layer for image serving.
Provides interfaces (gateways) and a service that resolves records and
populates the converted-image cache, abstracting the document store and
Pillow so front-ends (HTTP or others) can use the same core logic.
"""

from .errors import ConversionError, ParamsInvalid, StoreError
from .interfaces import ConnectionGateway, ConverterGateway, ReadyState, Record, RecordGateway
from .service import TifService
