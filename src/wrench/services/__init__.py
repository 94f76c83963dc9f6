"""Built-in service adapters, one module per external tool."""

from wrench.services.chkdsk import ChkdskAdapter
from wrench.services.disk_space import DiskSpaceAdapter
from wrench.services.heavyload import HeavyLoadAdapter
from wrench.services.kvrt_scan import KvrtScanAdapter
from wrench.services.ping_test import PingTestAdapter
from wrench.services.sfc import SfcAdapter
from wrench.services.smartctl import SmartctlAdapter
from wrench.services.winsat import WinsatAdapter

# Registration order is display order
BUILTIN_ADAPTERS = (
    DiskSpaceAdapter,
    PingTestAdapter,
    SfcAdapter,
    ChkdskAdapter,
    SmartctlAdapter,
    KvrtScanAdapter,
    WinsatAdapter,
    HeavyLoadAdapter,
)

__all__ = [
    "BUILTIN_ADAPTERS",
    "ChkdskAdapter",
    "DiskSpaceAdapter",
    "HeavyLoadAdapter",
    "KvrtScanAdapter",
    "PingTestAdapter",
    "SfcAdapter",
    "SmartctlAdapter",
    "WinsatAdapter",
]
