import logging
import threading

from bson import ObjectId
from bson.errors import InvalidId
from PIL import Image
from pymongo import MongoClient, monitoring
from pymongo.errors import PyMongoError

from .errors import ConversionError, StoreError
from .interfaces import ConnectionGateway, ConverterGateway, ReadyState, Record, RecordGateway

logger = logging.getLogger(__name__)


class _HeartbeatLogger(monitoring.ServerHeartbeatListener):
    """Logs store errors and recoveries seen by the driver's monitor threads."""

    def __init__(self) -> None:
        self._failing: set[tuple[str, int]] = set()

    def started(self, event: monitoring.ServerHeartbeatStartedEvent) -> None:
        pass

    def succeeded(self, event: monitoring.ServerHeartbeatSucceededEvent) -> None:
        if event.connection_id in self._failing:
            self._failing.discard(event.connection_id)
            logger.warning("reconnected")

    def failed(self, event: monitoring.ServerHeartbeatFailedEvent) -> None:
        if event.connection_id not in self._failing:
            self._failing.add(event.connection_id)
            logger.error('error - "%s"', event.reply)


class MongoConnection(ConnectionGateway):
    def __init__(
        self,
        uri: str,
        *,
        database: str = "get-tif",
        timeout_ms: int = 5000,
    ) -> None:
        self._uri = uri
        self._database = database
        self._timeout_ms = timeout_ms
        self._client: MongoClient | None = None
        self._state = ReadyState.DISCONNECTED
        self._lock = threading.Lock()

    @property
    def ready_state(self) -> ReadyState:
        return self._state

    @property
    def database(self):
        if self._client is None:
            raise StoreError("not connected")
        return self._client.get_default_database(default=self._database)

    def connect(self) -> None:
        with self._lock:
            if self._state in (ReadyState.CONNECTED, ReadyState.CONNECTING):
                return
            self._state = ReadyState.CONNECTING
            logger.info("connecting")
            client = MongoClient(
                self._uri,
                serverSelectionTimeoutMS=self._timeout_ms,
                event_listeners=[_HeartbeatLogger()],
            )
            try:
                client.admin.command("ping")
            except PyMongoError as e:
                client.close()
                self._state = ReadyState.DISCONNECTED
                logger.error('error - "%s"', e)
                raise StoreError(f"could not connect to store: {e}") from e
            self._client = client
            self._state = ReadyState.CONNECTED
            logger.info("connected")
            logger.info("open")

    def disconnect(self) -> None:
        with self._lock:
            if self._state not in (ReadyState.CONNECTED, ReadyState.CONNECTING):
                return
            self._state = ReadyState.DISCONNECTING
            try:
                if self._client is not None:
                    self._client.close()
            finally:
                self._client = None
                self._state = ReadyState.DISCONNECTED
                logger.warning("disconnected")


class MongoRecordStore(RecordGateway):
    def __init__(self, connection: MongoConnection, collection: str = "tifs") -> None:
        self._connection = connection
        self._collection = collection

    def find_record(self, record_id: str) -> Record | None:
        try:
            oid = ObjectId(record_id)
        except (InvalidId, TypeError):
            return None
        try:
            doc = self._connection.database[self._collection].find_one(
                {"_id": oid, "removed": {"$ne": True}},
                projection={"directory": 1, "filePath": 1, "removed": 1},
            )
        except PyMongoError as e:
            raise StoreError(f"record lookup failed: {e}") from e
        if doc is None:
            return None
        return Record(
            id=str(doc["_id"]),
            directory=str(doc.get("directory", "")),
            file_path=str(doc.get("filePath", "")),
            removed=bool(doc.get("removed", False)),
        )


class PillowConverter(ConverterGateway):
    # Pillow format names for the allowed target types
    FORMATS = {"jpg": "JPEG", "png": "PNG"}

    def convert(self, source_path: str, target_path: str, target_format: str) -> None:
        fmt = self.FORMATS.get(target_format)
        if fmt is None:
            raise ConversionError(f"unsupported target format {target_format!r}")
        try:
            with Image.open(source_path) as im:
                out = im
                if fmt == "JPEG" and im.mode not in ("RGB", "L", "CMYK"):
                    out = im.convert("RGB")
                elif fmt == "PNG" and im.mode not in ("1", "L", "LA", "I", "P", "RGB", "RGBA"):
                    out = im.convert("RGBA" if "A" in im.mode else "RGB")
                out.save(target_path, format=fmt)
        except (OSError, ValueError) as e:
            raise ConversionError(f"could not convert {source_path}: {e}") from e
