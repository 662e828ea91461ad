import os
from dataclasses import dataclass
from enum import IntEnum
from typing import Protocol


class ReadyState(IntEnum):
    DISCONNECTED = 0
    CONNECTED = 1
    CONNECTING = 2
    DISCONNECTING = 3


@dataclass(frozen=True)
class Record:
    id: str
    directory: str
    file_path: str
    removed: bool = False

    @property
    def source_path(self) -> str:
        return os.path.join(self.directory, self.file_path)


class ConnectionGateway(Protocol):
    @property
    def ready_state(self) -> ReadyState:
        ...

    def connect(self) -> None:
        """Open the store connection unless it is already connected or connecting.
        This is a blocking call; callers should offload to threads if needed.
        """

    def disconnect(self) -> None:
        """Close the store connection if it is connected or connecting, else do nothing."""


class RecordGateway(Protocol):
    def find_record(self, record_id: str) -> Record | None:
        """Return the record with this id unless it is missing or removed."""


class ConverterGateway(Protocol):
    def convert(self, source_path: str, target_path: str, target_format: str) -> None:
        """Convert the source image into target_format, writing it to target_path.
        This is a blocking call; callers should offload to threads if needed.
        """
