"""Sample door topology used to seed a fresh database."""

from __future__ import annotations

DEFAULT_DOORS: list[dict[str, object]] = [
    {
        "deviceId": 101,
        "name": "Main Entrance",
        "controllerId": 1,
        "controllerName": "Lobby Controller",
        "controllerGroupId": 1,
    },
    {
        "deviceId": 102,
        "name": "Lobby Side Door",
        "controllerId": 1,
        "controllerName": "Lobby Controller",
        "controllerGroupId": 1,
    },
    {
        "deviceId": 201,
        "name": "Gym East",
        "controllerId": 2,
        "controllerName": "Gym Controller",
        "controllerGroupId": 1,
    },
    {
        "deviceId": 202,
        "name": "Gym West",
        "controllerId": 2,
        "controllerName": "Gym Controller",
        "controllerGroupId": 1,
    },
    {
        "deviceId": 301,
        "name": "Office Wing",
        "controllerId": 3,
        "controllerName": "Office Controller",
        "controllerGroupId": 2,
    },
]
