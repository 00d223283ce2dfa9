"""FastAPI application: the EMSG daemon's REST surface."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .address import validate_address
from .auth import NonceCache, RequestAuthenticator, optional_auth, require_auth
from .config import DaemonConfig
from .crypto import KeyPair
from .discovery import TxtLookup
from .errors import (
    EmsgError,
    ForbiddenError,
    IdentityNotFound,
    MissingFields,
    NotGroupAdmin,
    SenderMismatch,
)
from .events import SystemEventLog
from .fanout import MessageFanout
from .group import GroupRegistry
from .models import (
    AddressListRequest,
    CreateGroupRequest,
    GroupUpdateRequest,
    MemberRequest,
    Message,
    NodeInfo,
    RegisterRequest,
    RouteMessageRequest,
    new_msg_id,
    now_iso,
)
from .router import build_resolver
from .storage import SqliteStore

logger = logging.getLogger(__name__)


class NotGroupMember(ForbiddenError):
    pass


class KeyChangeNotAuthorized(ForbiddenError):
    pass


def wire(app: FastAPI, config: DaemonConfig, store=None, lookup_txt: Optional[TxtLookup] = None,
         clock: Callable[[], float] = time.time):
    """Build the protocol components and attach them to app.state."""
    config.ensure_dirs()
    state = app.state
    state.config = config
    state.node_key = KeyPair.load_or_create(config.node_key_path)
    state.store = store if store is not None else SqliteStore(config.db_path)
    state.authenticator = RequestAuthenticator(
        state.store,
        clock=clock,
        max_past=config.auth_max_past,
        max_future=config.auth_max_future,
        nonce_cache=NonceCache(config.nonce_cache_size),
    )
    state.events = SystemEventLog(state.store, clock=clock)
    state.groups = GroupRegistry(state.store, state.events)
    state.fanout = MessageFanout(state.store, state.groups.get, config.domain)
    if config.broadcast_system_events:
        state.events.subscribe(state.fanout.broadcast_event)
    state.resolver = build_resolver(config, lookup_txt)


def create_app(config: Optional[DaemonConfig] = None, store=None,
               lookup_txt: Optional[TxtLookup] = None,
               clock: Callable[[], float] = time.time) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or getattr(app.state, "config", None) or DaemonConfig.from_env()
        wire(app, cfg, store=store, lookup_txt=lookup_txt, clock=clock)
        logger.info(f"Node key: {app.state.node_key.fingerprint}")
        logger.info(f"Serving {sorted(cfg.served_domains)} at {cfg.server_url}")
        logger.info(f"Publish: _emsg.{cfg.domain} TXT \"{cfg.server_url}\"")

        yield

        if store is None:
            app.state.store.close()
        logger.info("EMSG daemon stopped.")

    app = FastAPI(title="EMSG", version=__version__, lifespan=lifespan)
    app.add_exception_handler(EmsgError, emsg_error_handler)
    app.include_router(api)
    return app


async def emsg_error_handler(request: Request, exc: EmsgError):
    headers = {"WWW-Authenticate": "EMSG"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _require_admin(group, caller: str):
    if not group.is_admin(caller):
        raise NotGroupAdmin(f"{caller} is not an admin of group {group.id}")


api = APIRouter(prefix="/api")


# --- Node ---


@api.get("/identity")
async def get_identity(request: Request, caller: Optional[str] = Depends(optional_auth)) -> NodeInfo:
    state = request.app.state
    return NodeInfo(
        domain=state.config.domain,
        public_url=state.config.server_url,
        pubkey=state.node_key.pubkey_b64,
        fingerprint=state.node_key.fingerprint,
        version=__version__,
        authenticated_as=caller,
    )


# --- Users ---


@api.get("/user")
def get_user(request: Request, address: str):
    validate_address(address)
    identity = request.app.state.store.get_identity(address)
    if identity is None:
        raise IdentityNotFound(f"user not found: {address}")
    return identity


@api.post("/user", status_code=201)
def register_user(request: Request, req: RegisterRequest,
                  caller: Optional[str] = Depends(optional_auth)):
    """Register or update an identity.

    Replacing an existing key needs a request signed with the current one.
    """
    identity = req.to_identity()
    store = request.app.state.store
    existing = store.get_identity(identity.address)
    if existing is not None and existing.pubkey != identity.pubkey and caller != identity.address:
        raise KeyChangeNotAuthorized(f"changing the key of {identity.address} requires its current key")
    store.put_identity(identity)
    logger.info(f"Registered {identity.address}")
    return {"status": "ok", "address": identity.address}


# --- Messages ---


@api.post("/message", status_code=201)
def send_message(request: Request, message: Message, caller: str = Depends(require_auth)):
    state = request.app.state
    if message.from_addr and message.from_addr != caller:
        raise SenderMismatch(f"sender {message.from_addr} does not match authenticated {caller}")
    message.from_addr = caller
    # ids and send times are assigned here, never taken from the caller
    message.msg_id = new_msg_id()
    message.sent_at = now_iso()
    recipients = state.fanout.deliver(message)
    local, remote = [], []
    for address in sorted(recipients):
        if state.resolver.is_local(address):
            local.append(address)
        else:
            remote.append(address)
    return {
        "status": "message sent",
        "msg_id": message.msg_id,
        "recipients": sorted(recipients),
        "local": local,
        "remote": remote,
    }


@api.get("/messages")
def get_messages(request: Request, user: Optional[str] = None, limit: int = 100,
                 caller: str = Depends(require_auth)):
    user = user or caller
    if user != caller:
        raise ForbiddenError(f"{caller} cannot read messages of {user}")
    return request.app.state.store.query_messages_for_recipient(user, limit=limit)


# --- Groups ---


@api.post("/group", status_code=201)
def create_group(request: Request, req: CreateGroupRequest, caller: str = Depends(require_auth)):
    return request.app.state.groups.create_group(
        req.id,
        req.name,
        description=req.description,
        display_picture=req.display_picture,
        members=req.members,
        creator=caller,
    )


@api.get("/group")
def get_group(request: Request, id: str):
    return request.app.state.groups.require(id)


@api.patch("/group/{group_id}")
def update_group(request: Request, group_id: str, req: GroupUpdateRequest,
                 caller: str = Depends(require_auth)):
    groups: GroupRegistry = request.app.state.groups
    group = groups.require(group_id)
    if req.name is None and req.description is None and req.display_picture is None:
        _require_admin(group, caller)
    if req.name is not None:
        group = groups.update_name(group_id, req.name, actor=caller)
    if req.description is not None:
        group = groups.update_description(group_id, req.description, actor=caller)
    if req.display_picture is not None:
        group = groups.update_display_picture(group_id, req.display_picture, actor=caller)
    return group


@api.post("/group/{group_id}/members")
def add_member(request: Request, group_id: str, req: MemberRequest,
               caller: str = Depends(require_auth)):
    return request.app.state.groups.add_member(group_id, req.address, actor=caller)


@api.delete("/group/{group_id}/members/{address}")
def remove_member(request: Request, group_id: str, address: str,
                  caller: str = Depends(require_auth)):
    groups: GroupRegistry = request.app.state.groups
    if address == caller:
        return groups.remove_member(group_id, address)
    return groups.remove_member_by_admin(group_id, address, actor=caller)


@api.post("/group/{group_id}/admins")
def add_admin(request: Request, group_id: str, req: MemberRequest,
              caller: str = Depends(require_auth)):
    return request.app.state.groups.add_admin(group_id, req.address, actor=caller)


@api.delete("/group/{group_id}/admins/{address}")
def remove_admin(request: Request, group_id: str, address: str,
                 caller: str = Depends(require_auth)):
    return request.app.state.groups.remove_admin(group_id, address, actor=caller)


@api.get("/group/{group_id}/events")
def group_events(request: Request, group_id: str, caller: str = Depends(require_auth)):
    state = request.app.state
    group = state.groups.require(group_id)
    if not (group.is_member(caller) or group.is_admin(caller)):
        raise NotGroupMember(f"{caller} is not in group {group_id}")
    return state.events.list(group_id)


# --- Routing ---


@api.get("/route")
async def get_route(request: Request, address: str):
    route = await request.app.state.resolver.get_route_info(address)
    return route.model_dump()


@api.post("/route/validate")
async def validate_addresses(req: AddressListRequest):
    results = {}
    for address in req.addresses:
        try:
            validate_address(address)
        except EmsgError as e:
            results[address] = {"valid": False, "error": e.detail}
        else:
            results[address] = {"valid": True}
    return {"results": results}


@api.post("/route/message")
async def route_message(request: Request, req: RouteMessageRequest):
    if not req.recipients:
        raise MissingFields("no recipients provided")
    routes = await request.app.state.resolver.route_message(req.recipients)
    return {"routes": routes}


app = create_app()
