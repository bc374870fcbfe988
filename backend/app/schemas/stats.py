"""Aggregate views returned by the /stats endpoints."""

from datetime import date

from pydantic import BaseModel


class DayCount(BaseModel):
    day: date
    count: int


class VisitStats(BaseModel):
    total: int
    by_status: dict[str, int]
    # Only days with at least one visit, oldest first.
    last_7_days: list[DayCount]


class ClientStats(BaseModel):
    total: int
    active: int
    unassigned: int


class SupervisorStats(BaseModel):
    promoters: int
    active_promoters: int
    clients: ClientStats
    visits: VisitStats
    visits_by_promoter: dict[str, int]


class AdminStats(BaseModel):
    users: int
    active_users: int
    users_by_role: dict[str, int]
    # Active promoters with a visit in the last 30 days.
    promoters_visiting: int
    clients: ClientStats
    visits: VisitStats
