from dataclasses import dataclass
from fastapi import Request
from lenny_listens.config import Settings
from lenny_listens.services.dispatcher import Dispatcher, build_strategy
from lenny_listens.services.kv_store import KVStore, build_store
from lenny_listens.services.lifecycle import StatusLifecycle

@dataclass
class Services:
    settings: Settings
    store: KVStore
    lifecycle: StatusLifecycle
    generator: Dispatcher  # backs /generate

def build_services(settings: Settings, store: KVStore | None = None,
                   dispatcher: Dispatcher | None = None, generator: Dispatcher | None = None) -> Services:
    store = store or build_store(settings)
    dispatcher = dispatcher or Dispatcher(build_strategy(settings.GENERATION_STRATEGY, settings))
    generator = generator or Dispatcher(build_strategy(settings.GENERATE_ENDPOINT_STRATEGY, settings))
    return Services(settings=settings, store=store,
                    lifecycle=StatusLifecycle(store, dispatcher, settings), generator=generator)

def get_services(request: Request) -> Services:
    return request.app.state.services

def get_lifecycle(request: Request) -> StatusLifecycle:
    return request.app.state.services.lifecycle
