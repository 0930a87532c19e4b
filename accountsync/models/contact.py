"""
Contact model for People API connections.
"""
import json
import logging
from typing import Optional

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

PERSON_FIELDS = "names,emailAddresses,phoneNumbers,organizations,photos"


def _first(person: dict, key: str) -> dict:
    values = person.get(key) or [{}]
    return values[0] if isinstance(values[0], dict) else {}


class ContactRecord(BaseModel):
    """Flattened view of a People API person. raw_payload keeps the original."""

    id: str = Field(description="Resource name without the 'people/' prefix")
    resource_name: str
    display_name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    photo_url: Optional[str] = None
    raw_payload: Optional[str] = None
    synced_at: Optional[int] = None

    @classmethod
    def from_person(cls, person: dict) -> "ContactRecord":
        resource_name = person["resourceName"]
        name = _first(person, "names")
        org = _first(person, "organizations")
        return cls(
            id=resource_name.removeprefix("people/"),
            resource_name=resource_name,
            display_name=name.get("displayName"),
            given_name=name.get("givenName"),
            family_name=name.get("familyName"),
            email=_first(person, "emailAddresses").get("value"),
            phone=_first(person, "phoneNumbers").get("value"),
            company=org.get("name"),
            job_title=org.get("title"),
            photo_url=_first(person, "photos").get("url"),
            raw_payload=json.dumps(person, separators=(",", ":")),
        )

    def to_person(self) -> dict:
        """The People API dict, rebuilt from flattened columns if the payload is unusable."""
        if self.raw_payload:
            try:
                person = json.loads(self.raw_payload)
                if isinstance(person, dict):
                    return person
            except ValueError as e:
                logger.warning("Unparsable raw payload for contact %s: %s", self.id, e)
        return {
            "resourceName": self.resource_name,
            "names": [{"displayName": self.display_name}] if self.display_name else [],
            "emailAddresses": [{"value": self.email}] if self.email else [],
            "phoneNumbers": [{"value": self.phone}] if self.phone else [],
            "organizations": (
                [{"name": self.company, "title": self.job_title}] if self.company or self.job_title else []
            ),
            "photos": [{"url": self.photo_url}] if self.photo_url else [],
        }
