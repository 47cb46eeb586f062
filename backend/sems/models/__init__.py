from sems.models.event import AttendanceLog, Event, EventScanner
from sems.models.facility import Facility
from sems.models.school import Level, Section, Student, StudentGuardian

__all__ = [
    "Event", "EventScanner", "AttendanceLog",
    "Facility",
    "Level", "Section", "Student", "StudentGuardian",
]
