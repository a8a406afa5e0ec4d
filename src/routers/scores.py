"""Score endpoints: cached productivity score and on-demand vitality score."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import Coordinator
from src.healthsync.vitality_score import aging_band
from src.models.sync import ProductivityScoreWire, VitalityScoreWire

router = APIRouter(prefix="/scores", tags=["scores"])


@router.get("/productivity", response_model=ProductivityScoreWire)
async def get_productivity_score(coordinator: Coordinator) -> Any:
    score = coordinator.get_last_known_good().score
    if score is None:
        raise HTTPException(status_code=404, detail="No productivity score computed yet")
    return ProductivityScoreWire.from_domain(score)


@router.get("/vitality", response_model=VitalityScoreWire)
async def get_vitality_score(coordinator: Coordinator) -> Any:
    vitality = coordinator.compute_vitality()
    return VitalityScoreWire.from_domain(vitality, aging_band(vitality.aging_rate, coordinator.config))
