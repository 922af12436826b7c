"""Fixed feed shown while no service is connected."""

from __future__ import annotations

from datetime import datetime, timedelta

from workfeed.models import Notification, Priority, Provider

# (id, provider, title, subtitle, body, offset seconds, icon, priority)
_SAMPLES = [
    ("gh-1001", Provider.GITHUB, "PR #42: Add dark mode support", "octocat/my-project",
     "Review requested", -300, "arrow.triangle.branch", Priority.HIGH),
    ("teams-2001", Provider.TEAMS, "Sprint Planning Meeting", "John Doe",
     "Let's discuss the Q1 roadmap", -600, "bubble.left.and.bubble.right", Priority.NORMAL),
    ("notion-3001", Provider.NOTION, "Project Roadmap updated", "Updated 10 minutes ago",
     "", -900, "doc.text", Priority.NORMAL),
    ("cal-4001", Provider.SYSTEM_CALENDAR, "1:1 with Manager", "2:00 PM - 2:30 PM",
     "Zoom Meeting", 1800, "calendar", Priority.HIGH),
    ("gh-1002", Provider.GITHUB, "Issue #87: Fix login timeout", "octocat/api-server",
     "Assigned to you", -1800, "arrow.triangle.branch", Priority.NORMAL),
    ("teams-2002", Provider.TEAMS, "Design Review Feedback", "Jane Smith",
     "I've left comments on the wireframe", -2400, "bubble.left.and.bubble.right", Priority.NORMAL),
    ("gcal-5001", Provider.GOOGLE_CALENDAR, "Team Standup", "9:00 AM - 9:15 AM",
     "Google Meet", 3600, "calendar.badge.clock", Priority.NORMAL),
    ("notion-3002", Provider.NOTION, "API Documentation draft", "Updated 1 hour ago",
     "", -3600, "doc.text", Priority.LOW),
    ("gh-1003", Provider.GITHUB, "Release v2.1.0 published", "octocat/my-project",
     "New release", -5400, "arrow.triangle.branch", Priority.LOW),
    ("teams-2003", Provider.TEAMS, "Deployment notification", "DevOps Bot",
     "Production deployment completed successfully", -7200, "bubble.left.and.bubble.right", Priority.LOW),
]


def sample_notifications(now: datetime) -> list[Notification]:
    """Ten deterministic items timed relative to *now*."""
    return [
        Notification(
            id=id_,
            provider=provider,
            title=title,
            subtitle=subtitle,
            body=body,
            timestamp=now + timedelta(seconds=offset),
            icon_hint=icon,
            priority=priority,
            group_key=subtitle if provider is Provider.GITHUB else None,
        )
        for id_, provider, title, subtitle, body, offset, icon, priority in _SAMPLES
    ]
