from secfeed.models.base import Base
from secfeed.models.incident import Incident, IncidentSource, RawDocument
from secfeed.models.setting import AppSetting
from secfeed.models.summary import SummaryRun

__all__ = [
    "AppSetting",
    "Base",
    "Incident",
    "IncidentSource",
    "RawDocument",
    "SummaryRun",
]
