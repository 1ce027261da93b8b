import re
from datetime import datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import PlanRequest


BUDGET_TEXT = {
    "free": "FREE activities only",
    "low": "affordable options ($)",
    "medium": "mid-range options ($$)",
    "high": "premium experiences ($$$)",
}

ENERGY_TEXT = {
    "low": "Energy level: LOW. Plan gentle, relaxing activities (cafes, parks, bookstores, scenic walks). Avoid anything strenuous or crowded.",
    "medium": "Energy level: MEDIUM. Balance active and chill activities.",
    "high": "Energy level: HIGH. Plan active, exciting activities (walking tours, sports, nightlife, several neighborhoods).",
}

_ACTIVITY_HINTS = [
    (re.compile(r"chamonix|aspen|vail|whistler|zermatt|st\.?\s*moritz|courchevel|verbier|jackson hole|park city|telluride", re.I),
     "This is a SKI destination: skiing or snowboarding must be the centerpiece of the plan."),
    (re.compile(r"bali|byron bay|gold coast|bondi|tofino|tamarindo|nosara|rincon|jeffreys bay", re.I),
     "This is a SURF destination: surfing must be the centerpiece of the plan."),
    (re.compile(r"patagonia|annapurna|kilimanjaro|dolomites|camino", re.I),
     "This is a HIKING destination: hiking or trekking must be the centerpiece of the plan."),
]

CORRECTIVE_TOOL_INSTRUCTION = (
    "Do not write the itinerary yet. Respond ONLY with tool calls: call the data tools you need "
    "(weather, attractions, restaurants, accommodations and any others that help) for the destination."
)


def local_now(tz: Optional[str]) -> datetime:
    if tz:
        try:
            return datetime.now(ZoneInfo(tz))
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return datetime.now()


def _hour_label(hour: int) -> str:
    suffix = "am" if hour < 12 else "pm"
    h = hour % 12 or 12
    return f"{h}{suffix}"


def time_sections(request: PlanRequest, now: datetime) -> str:
    if request.right_now:
        end = now + timedelta(hours=2)
        return (
            f"## Right Now ({now.strftime('%I:%M %p').lstrip('0')} - {end.strftime('%I:%M %p').lstrip('0')})\n"
            "[2-3 things the user can do in the next 2 hours, walk-in friendly and open now]\n\n"
            "## Quick Bite\n[One fast food recommendation open right now, with a dish to order]"
        )
    if request.is_multi_day:
        blocks = []
        for i in range(request.days):
            label = (now + timedelta(days=i)).strftime("%A, %B %d")
            blocks.append(
                f"# Day {i + 1} - {label}\n"
                "## Morning (8am - 12pm)\n[...]\n\n## Afternoon (12pm - 6pm)\n[...]\n\n## Evening (6pm - 11pm)\n[...]"
            )
        return "\n\n".join(blocks)
    if request.recurring:
        return "\n\n".join(f"## Week {i} - [Theme Name]\n### Morning / Afternoon / Evening plans" for i in range(1, 5))
    hour = request.current_hour
    if hour is not None and hour >= 18:
        return "## Evening (now - 11pm)\n[Pack the evening: dinner, activities, nightlife]"
    if hour is not None and hour >= 12:
        return "## Afternoon (now - 6pm)\n[Start from now]\n\n## Evening (6pm - 11pm)\n[Plans for the night]"
    return (
        "## Morning (8am - 12pm)\n[Real venue names, neighborhoods, practical details]\n\n"
        "## Afternoon (12pm - 6pm)\n[Continue the day's arc]\n\n"
        "## Evening (6pm - 11pm)\n[Dinner, nightlife or relaxation]"
    )


def special_instructions(request: PlanRequest) -> List[str]:
    extras: List[str] = []
    if request.budget != "any":
        extras.append(f"- Budget: {BUDGET_TEXT[request.budget]}. Factor cost into every suggestion.")
    if request.mood:
        extras.append(f'- The user\'s mood: "{request.mood}". Let it shape the tone and activity choice.')
    if request.current_hour is not None and not request.right_now and not request.is_multi_day:
        if request.current_hour >= 18:
            extras.append(f"- It's currently {_hour_label(request.current_hour)}. Only plan the evening.")
        elif request.current_hour >= 12:
            extras.append(f"- It's currently {_hour_label(request.current_hour)}. Skip the morning.")
    if request.energy_level:
        extras.append(f"- {ENERGY_TEXT[request.energy_level]}")
    if request.interests:
        extras.append(f"- Interests: {', '.join(request.interests)}.")
    if request.dietary:
        extras.append(f"- Dietary restrictions: {', '.join(request.dietary)}. Every restaurant must accommodate them.")
    if request.accessible:
        extras.append("- ACCESSIBILITY REQUIRED: wheelchair accessible venues, step-free routes, accessible transit.")
    if request.date_night:
        extras.append("- DATE NIGHT MODE: romantic plan for two; intimate restaurants, scenic spots, reservation tips.")
    if request.anti_routine and request.past_places:
        extras.append(
            f"- ANTI-ROUTINE MODE: do NOT recommend any of: {', '.join(request.past_places[:30])}. Suggest new experiences."
        )
    if request.recurring:
        extras.append("- RECURRING PLANS MODE: 4 different Saturday plans, each with its own theme and neighborhoods.")
    if request.is_multi_day:
        extras.append(
            f"- MULTI-DAY MODE ({request.days} days): distinct theme per day, never repeat a venue, "
            "arrival day light, departure day relaxed. The hotel appears once at the end."
        )
    if request.right_now:
        extras.append("- RIGHT NOW MODE: only what is open or happening in the next 2 hours. Keep it short.")
    return extras


def build_system_prompt(request: PlanRequest, city: str, now: Optional[datetime] = None) -> str:
    now = now or local_now(request.timezone)
    extras = special_instructions(request)
    extras_block = "\n\nSPECIAL INSTRUCTIONS:\n" + "\n".join(extras) if extras else ""
    return (
        "You are an enthusiastic local concierge who knows the destination intimately. "
        "First gather real-time data by calling the available tools, then plan the user's day.\n\n"
        f"TODAY IS: {now.strftime('%A, %B %d, %Y')}\n"
        f"DESTINATION: {city}\n\n"
        "RULES:\n"
        "1. Venue names must come from the tool data. Public parks and landmarks that cannot close are the only exception.\n"
        "2. Route geographically: one neighborhood per time period, flowing in one direction, never zig-zagging.\n"
        "3. Every venue is a clickable Markdown link; use the tool's link field when present.\n"
        "4. Cite concrete prices and weather (temperature, rain, UV) with practical advice.\n"
        "5. Every section below is mandatory.\n\n"
        "Structure the itinerary with these exact sections:\n\n"
        f"{time_sections(request, now)}\n\n"
        "## Estimated Total\n[Food & Drinks, Activities & Entry, Transport, **Total per person**, then **Pro Tips:** 2-4 lines]\n\n"
        "## Your Hotel\n[ONE accommodation from the data: link, type, price per night, neighborhood, 2-3 sentence review]"
        f"{extras_block}"
    )


def build_user_message(request: PlanRequest, city: str) -> str:
    place = request.city if city.lower() == request.city.lower() else f"{request.city} ({city})"
    if request.is_multi_day:
        parts = [f"I'm planning a {request.days}-day trip to {place}."]
    elif request.right_now:
        parts = [f"I'm in {place} right now. What can I do in the next couple of hours?"]
    else:
        parts = [f"I'm visiting {place}. Plan my day there."]
    if request.budget != "any":
        parts.append(f"Budget: {request.budget}.")
    if request.mood:
        parts.append(f'How I\'m feeling: "{request.mood}".')
    if request.energy_level:
        parts.append(f"Energy level: {request.energy_level}.")
    if request.dietary:
        parts.append(f"Dietary needs: {', '.join(request.dietary)}.")
    if request.accessible:
        parts.append("I need wheelchair accessible venues.")
    if request.date_night:
        parts.append("This is a date night, make it romantic.")
    for pattern, hint in _ACTIVITY_HINTS:
        if pattern.search(request.city) or pattern.search(city):
            parts.append(hint)
            break
    parts.append(f"Use the tools to look up {city} before writing anything.")
    return " ".join(parts)
