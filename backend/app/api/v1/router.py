from fastapi import APIRouter
from app.api.v1 import campaigns, ads

api_router = APIRouter()

api_router.include_router(campaigns.router, prefix="/campaigns", tags=["Campaigns"])
api_router.include_router(ads.router, prefix="/ads", tags=["Ads & Publishing"])
