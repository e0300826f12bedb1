"""Topical responders for scenic places, rivers and parks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar

from wayfinder.responders.base import Reply, Responder

if TYPE_CHECKING:
    from wayfinder.memory.models import MemoryEntry

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.6
KEYWORD_BONUS = 0.05
_SNIPPET_CHARS = 80


class TopicalResponder(Responder):
    """Answers from a table of canned answers keyed by keyword.

    The canned answer picked for the first matching keyword is the draft the
    content generator works from. When context is supplied an extra sentence
    ties the answer back to the user's earlier conversation.
    """

    canned_answers: ClassVar[dict[str, str]] = {}
    general_answer: ClassVar[str] = ""
    landmarks: ClassVar[tuple[str, ...]] = ()

    def draft_answer(self, hits: list[str]) -> str:
        for keyword in hits:
            if keyword in self.canned_answers:
                return self.canned_answers[keyword]
        return self.general_answer

    def context_sentence(self, context: list[MemoryEntry]) -> str:
        snippet = " ".join(context[0].content.split())
        if len(snippet) > _SNIPPET_CHARS:
            snippet = snippet[: _SNIPPET_CHARS - 3].rstrip() + "..."
        return f'This also builds on your earlier conversation about "{snippet}".'

    def is_specific(self, text: str) -> bool:
        lowered = text.lower()
        return any(landmark.lower() in lowered for landmark in self.landmarks)

    def confidence(self, hits: list[str], text: str) -> float:
        score = BASE_CONFIDENCE + KEYWORD_BONUS * len(hits)
        if len(text) > 200:
            score += 0.1
        if len(text) > 500:
            score += 0.1
        if self.is_specific(text):
            score += 0.1
        return round(min(score, 1.0), 2)

    async def generate(
        self,
        query: str,
        context: list[MemoryEntry],
        *,
        user_id: str,
        session_id: str,
    ) -> Reply:
        hits = self.matched_keywords(query)
        generation = await self._render(query, context, self.draft_answer(hits))

        text = generation.text.strip()
        if context:
            text = f"{text} {self.context_sentence(context)}"
        logger.debug("[%s] keyword hits=%s context=%d", self.name, hits, len(context))
        return Reply(
            text=text,
            confidence=self.confidence(hits, text),
            input_tokens=generation.input_tokens,
            output_tokens=generation.output_tokens,
        )


class ScenicResponder(TopicalResponder):
    topic_type = "scenic"
    default_system_prompt = """\
You are the Scenic guide, a specialist in scenic locations, viewpoints and tourist attractions.

Your expertise covers viewpoints and landscapes, landmarks, photography spots,
hill stations, coastal scenery, monuments and the best sunrise and sunset spots.

When answering:
1. Name specific locations and describe what makes them scenic.
2. Include practical details: best viewing times, access and entry fees.
3. Mention seasonal variations and weather.
4. Suggest photography angles where relevant.
Be enthusiastic but accurate, and always give actionable recommendations."""

    canned_answers = {
        "mountain": (
            "For mountain scenery, head to the Nilgiri Hills: tea gardens and misty "
            "ridgelines make for an unforgettable drive."
        ),
        "hill": (
            "Hill stations like Ooty and Kodaikanal offer cool air, lake views and "
            "peaceful walks above the plains."
        ),
        "sunrise": (
            "Marina Beach in Chennai has a stunning sunrise over the Bay of Bengal, and "
            "the Mahabalipuram Shore Temple pairs coastal views with history."
        ),
        "sunset": (
            "Watch the sunset from the Mahabalipuram Shore Temple, where the light "
            "turns the old granite gold."
        ),
        "photography": (
            "The Western Ghats are full of waterfalls, viewpoints and green valleys, "
            "ideal for nature photography."
        ),
        "landscape": (
            "The Western Ghats offer some of the finest landscapes in the south, from "
            "shola forests to cloud-topped peaks."
        ),
    }
    general_answer = (
        "For scenic places, consider the backwaters of Kerala or the hill stations of "
        "Ooty and Kodaikanal. Each offers its own natural beauty and calm."
    )
    landmarks = (
        "Nilgiri",
        "Ooty",
        "Kodaikanal",
        "Marina Beach",
        "Mahabalipuram",
        "Western Ghats",
        "Kerala",
    )


class RiverResponder(TopicalResponder):
    topic_type = "river"
    default_system_prompt = """\
You are the River guide, a specialist in rivers, lakes, waterfalls and aquatic activities.

Your expertise covers river systems, water sports, fishing spots, boating,
waterfalls, river ecology and water safety.

When answering:
1. Name specific rivers and water bodies and describe them.
2. List the water activities available and the best season for each.
3. Always mention safety measures, water conditions and any permits needed.
4. Suggest the equipment a visitor should bring."""

    canned_answers = {
        "fishing": (
            "The Kaveri River is known for fishing: you can cast for mahseer and camp "
            "along its banks."
        ),
        "boating": (
            "Periyar Lake in Kerala has boat cruises through the wildlife sanctuary, "
            "with elephants often seen at the water's edge."
        ),
        "lake": (
            "Periyar Lake in Kerala offers calm water, boat cruises and wildlife "
            "sightings from the deck."
        ),
        "waterfall": (
            "Athirappilly Falls on the Chalakudy River is the largest waterfall in "
            "Kerala and is best visited after the monsoon."
        ),
        "swimming": (
            "Swim only at designated ghats: the Godavari has several calm stretches, "
            "but currents change quickly during the monsoon."
        ),
    }
    general_answer = (
        "Consider the Tungabhadra River near Hampi, where coracle rides combine river "
        "activities with the ancient ruins along its banks."
    )
    landmarks = (
        "Kaveri",
        "Periyar",
        "Godavari",
        "Tungabhadra",
        "Hampi",
        "Athirappilly",
        "Chalakudy",
    )


class ParkResponder(TopicalResponder):
    topic_type = "park"
    default_system_prompt = """\
You are the Park guide, a specialist in parks, gardens, recreational areas and outdoor activities.

Your expertise covers national parks, city parks, botanical gardens, trails,
camping and picnic areas, playgrounds and park facilities.

When answering:
1. Name specific parks and their key features.
2. Include facilities, entry fees, timings and accessibility.
3. Consider different age groups and family needs.
4. Mention park rules, guided programs and transport options."""

    canned_answers = {
        "playground": (
            "Cubbon Park in Bangalore has playgrounds, shaded walking paths and wide "
            "lawns that suit families."
        ),
        "children": (
            "Cubbon Park in Bangalore is a favourite with children thanks to its toy "
            "train, playgrounds and open lawns."
        ),
        "hiking": (
            "Sanjay Gandhi National Park has nature trails through dense forest and the "
            "ancient Kanheri caves at the top of the climb."
        ),
        "trail": (
            "Sanjay Gandhi National Park offers well-marked nature trails with good "
            "chances of spotting deer and birds."
        ),
        "camping": (
            "Sanjay Gandhi National Park allows guided nature camps; book with the "
            "forest office in advance."
        ),
        "picnic": (
            "The Botanical Gardens in Ooty are perfect for picnics, with diverse flora "
            "and well-kept lawns."
        ),
        "garden": (
            "The Botanical Gardens in Ooty hold over a thousand plant species across "
            "terraced lawns and glasshouses."
        ),
    }
    general_answer = (
        "Consider Guindy National Park in Chennai, which combines urban convenience "
        "with natural beauty and wildlife conservation."
    )
    landmarks = (
        "Cubbon Park",
        "Bangalore",
        "Sanjay Gandhi",
        "Botanical Gardens",
        "Ooty",
        "Guindy",
        "Chennai",
    )
