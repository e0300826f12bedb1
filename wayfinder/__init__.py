"""Wayfinder — topic responders, query orchestration and tiered memory."""
