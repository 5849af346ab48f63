"""
Auxiliary signal scanner port (Wi-Fi, Bluetooth, cellular).

Production deployments plug in a scanner backed by a native device agent;
the engine itself never simulates radio scans.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Iterable, List, Optional

from utils.errors import ChannelUnavailable


class SignalChannel(Enum):
    """Auxiliary channels corroborating a GPS fix."""
    WIFI = "wifi"
    BLUETOOTH = "bluetooth"
    CELLULAR = "cellular"


class SignalScanner(ABC):
    """Capability interface: one scan per channel."""

    @abstractmethod
    def scan(self, channel: SignalChannel) -> List[str]:
        """
        Return the identifiers observed on a channel.

        Raises:
            ChannelUnavailable: the channel could not be sensed
        """


class StaticSignalScanner(SignalScanner):
    """
    Scanner over identifier lists already collected elsewhere: reported by the
    device agent with the check-in request, or fixed by a test.

    A channel mapped to None (or missing) is reported as unavailable.
    """

    def __init__(self, observations: Dict[SignalChannel, Optional[Iterable[str]]] = None):
        self._observations = {}
        for channel, identifiers in (observations or {}).items():
            self._observations[SignalChannel(channel)] = (
                list(identifiers) if identifiers is not None else None
            )

    def scan(self, channel: SignalChannel) -> List[str]:
        identifiers = self._observations.get(channel)
        if identifiers is None:
            raise ChannelUnavailable(channel.value)
        return list(identifiers)


class ReportedSignalScanner(StaticSignalScanner):
    """Identifier lists reported by the native device agent together with a check-in."""

    def __init__(self, wifi: Optional[Iterable[str]] = None,
                 bluetooth: Optional[Iterable[str]] = None,
                 cellular: Optional[Iterable[str]] = None):
        super().__init__({
            SignalChannel.WIFI: wifi,
            SignalChannel.BLUETOOTH: bluetooth,
            SignalChannel.CELLULAR: cellular
        })


class UnavailableSignalScanner(SignalScanner):
    """Used when no device agent is attached: every channel is unavailable."""

    def scan(self, channel: SignalChannel) -> List[str]:
        raise ChannelUnavailable(channel.value, f"No signal agent attached for {channel.value}")
