from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import Request

from app.scripts.logging_config import get_logger
from app.services.data_service import RemoteDataService, build_data_service
from app.services.geo_search import GeoSearchClient
from app.services.map_session import MapSession

logger = get_logger("app_services")


@dataclass
class AppServices:
    """Process-wide collaborators, built once at startup and closed at shutdown."""
    data: RemoteDataService
    geo: GeoSearchClient
    sessions: Dict[str, MapSession] = field(default_factory=dict)

    async def aclose(self) -> None:
        for session in list(self.sessions.values()):
            session.close()
        self.sessions.clear()
        await self.geo.close()
        await self.data.close()
        logger.info("services closed backend=%s", self.data.name)


def build_app_services(data: Optional[RemoteDataService] = None,
                       geo: Optional[GeoSearchClient] = None) -> AppServices:
    services = AppServices(data=data or build_data_service(), geo=geo or GeoSearchClient())
    logger.info("services built backend=%s geocoder=%s", services.data.name, services.geo.base_url)
    return services


def get_services(request: Request) -> AppServices:
    return request.app.state.services
