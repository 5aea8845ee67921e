from fastapi import Request

from pagebot.services.pipeline import MessengerPipeline
from pagebot.services.token_service import BotSettingsCache


def get_pipeline(request: Request) -> MessengerPipeline:
    return request.app.state.pipeline


def get_settings_cache(request: Request) -> BotSettingsCache:
    return request.app.state.settings_cache


def get_takeover_store(request: Request):
    return request.app.state.pipeline.takeover_store
