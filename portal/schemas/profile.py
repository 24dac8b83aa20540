"""Profile editor schemas"""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List

DAY_OPTIONS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
HOUR_OPTIONS = [
    "8:00 AM to 9:00 AM", "9:00 AM to 10:00 AM", "10:00 AM to 11:00 AM", "11:00 AM to 12:00 PM",
    "12:00 PM to 1:00 PM", "1:00 PM to 2:00 PM", "2:00 PM to 3:00 PM", "3:00 PM to 4:00 PM", "4:00 PM to 5:00 PM",
]
PLATFORM_OPTIONS = ["In-person", "Online"]


def _check_options(values: List[str], options: List[str], label: str) -> List[str]:
    unknown = [v for v in values if v not in options]
    if unknown:
        raise ValueError(f"Unknown {label}: {', '.join(unknown)}")
    # keep the canonical option order, drop duplicates
    return [option for option in options if option in values]


class ProfileUpdate(BaseModel):
    """Editable consultant profile fields"""
    name: str = Field(..., min_length=1)
    specialty: str = ""
    contact_info: str = ""
    birth_center_address: str = ""
    available_days: List[str] = Field(default_factory=list)
    consultation_hours: List[str] = Field(default_factory=list)
    platform: List[str] = Field(default_factory=list)
    unavailable_note: str = ""

    @field_validator("available_days")
    @classmethod
    def check_days(cls, value):
        return _check_options(value, DAY_OPTIONS, "day")

    @field_validator("consultation_hours")
    @classmethod
    def check_hours(cls, value):
        return _check_options(value, HOUR_OPTIONS, "consultation hour")

    @field_validator("platform")
    @classmethod
    def check_platform(cls, value):
        return _check_options(value, PLATFORM_OPTIONS, "platform")

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "specialty": self.specialty,
            "contactInfo": self.contact_info,
            "birthCenterAddress": self.birth_center_address,
            "availableDays": self.available_days,
            "consultationHours": self.consultation_hours,
            "platform": self.platform,
            "unavailableNote": self.unavailable_note,
        }
