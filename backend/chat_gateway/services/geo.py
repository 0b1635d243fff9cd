from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import unquote

# Edge proxies that attach geolocation to forwarded requests
_HEADER_SETS = (
    {
        "latitude": "x-vercel-ip-latitude",
        "longitude": "x-vercel-ip-longitude",
        "city": "x-vercel-ip-city",
        "country": "x-vercel-ip-country",
    },
    {
        "latitude": "cf-iplatitude",
        "longitude": "cf-iplongitude",
        "city": "cf-ipcity",
        "country": "cf-ipcountry",
    },
)


@dataclass(frozen=True)
class RequestHints:
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    def is_known(self) -> bool:
        return any((self.latitude, self.longitude, self.city, self.country))


def hints_from_headers(headers: Mapping[str, str]) -> RequestHints:
    """Best-effort locale hints; missing headers simply leave fields empty."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for names in _HEADER_SETS:
        values = {field: lowered.get(header) for field, header in names.items()}
        if any(values.values()):
            if values["city"]:
                # Vercel percent-encodes city names
                values["city"] = unquote(values["city"])
            return RequestHints(**values)
    return RequestHints()
