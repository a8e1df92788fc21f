# nearbuy/flows/worker_registration.py
"""
Signing up as a job worker who runs small errands for nearby users.

    [ask_name] → ask_photo (optional) → [ask_location] → ask_vehicle
        → ask_job_types → ask_availability → review → done

Existing users skip the name step, and also the location step when their
profile already has one; the worker profile is attached to their account.
Job types are a multi-select: each tap toggles one type and ``done``
moves on once at least one is chosen.
"""

from __future__ import annotations

import logging
from enum import Enum

from nearbuy.domain.catalog import (
    AVAILABILITY_KEYWORDS,
    JOB_TYPE_KEYWORDS,
    JOB_TYPES,
    VEHICLE_KEYWORDS,
    VEHICLE_TYPES,
    WORKER_AVAILABILITY,
    option_title,
)
from nearbuy.domain.flow_types import FlowType
from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.models import ResultKind
from nearbuy.domain.services.pii_masking import mask_phone
from nearbuy.domain.services.validators import is_skip, validate_name
from nearbuy.flows.base import BACK_BUTTON, MENU_BUTTON, SKIP_BUTTON, BaseFlowHandler, review_buttons
from nearbuy.flows.context import FlowContext

logger = logging.getLogger("nearbuy.flows.worker_registration")

JOB_TYPE_PREFIX = "jobtype_"
JOB_TYPES_DONE_ID = "jobtype_done"
DONE_WORDS = ("done", "next", "finish", "continue")


class WorkerStep(str, Enum):
    ASK_NAME = "ask_name"
    ASK_PHOTO = "ask_photo"
    ASK_LOCATION = "ask_location"
    ASK_VEHICLE = "ask_vehicle"
    ASK_JOB_TYPES = "ask_job_types"
    ASK_AVAILABILITY = "ask_availability"
    REVIEW = "review"
    DONE = "done"


class WorkerRegistrationHandler(BaseFlowHandler):
    flow = FlowType.WORKER_REGISTRATION
    Step = WorkerStep
    first_step = WorkerStep.ASK_NAME
    back_steps = {
        WorkerStep.ASK_PHOTO: WorkerStep.ASK_NAME,
        WorkerStep.ASK_LOCATION: WorkerStep.ASK_PHOTO,
        WorkerStep.ASK_VEHICLE: WorkerStep.ASK_PHOTO,
        WorkerStep.ASK_JOB_TYPES: WorkerStep.ASK_VEHICLE,
        WorkerStep.ASK_AVAILABILITY: WorkerStep.ASK_JOB_TYPES,
        WorkerStep.REVIEW: WorkerStep.ASK_AVAILABILITY,
    }

    def step_handlers(self):
        return {
            WorkerStep.ASK_NAME: self._on_name,
            WorkerStep.ASK_PHOTO: self._on_photo,
            WorkerStep.ASK_LOCATION: self._on_location,
            WorkerStep.ASK_VEHICLE: self._on_vehicle,
            WorkerStep.ASK_JOB_TYPES: self._on_job_types,
            WorkerStep.ASK_AVAILABILITY: self._on_availability,
            WorkerStep.REVIEW: self._on_review,
            WorkerStep.DONE: self._on_done,
        }

    def step_prompts(self):
        return {
            WorkerStep.ASK_NAME: self._ask_name,
            WorkerStep.ASK_PHOTO: self._ask_photo,
            WorkerStep.ASK_LOCATION: self._ask_location,
            WorkerStep.ASK_VEHICLE: self._ask_vehicle,
            WorkerStep.ASK_JOB_TYPES: self._ask_job_types,
            WorkerStep.ASK_AVAILABILITY: self._ask_availability,
            WorkerStep.REVIEW: self._show_review,
            WorkerStep.DONE: self._show_done,
        }

    async def start(self, ctx: FlowContext) -> None:
        user = ctx.user
        if user is not None and user.is_worker():
            await ctx.send.send_text(ctx.phone, "👷 You're already registered as a worker.")
            await self.exit_to_main_menu(ctx)
            return
        if user is None:
            await self.begin(ctx)
            return
        known = {"name": user.name}
        if user.has_location():
            known.update(latitude=user.latitude, longitude=user.longitude)
        await self.begin(ctx, WorkerStep.ASK_PHOTO, known)

    def _has_location(self, ctx: FlowContext) -> bool:
        return ctx.temp.get("latitude") is not None and ctx.temp.get("longitude") is not None

    # ── ask_name / ask_photo / ask_location ──────────────────

    async def _ask_name(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "👷 *Become a NearBuy worker*\n\nEarn by helping people nearby with small jobs.\n\nWhat is your name?",
            [MENU_BUTTON],
        )

    async def _on_name(self, ctx: FlowContext, message: IncomingMessage) -> None:
        name = validate_name(message.text_content())
        if name is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please enter a name between 2 and 100 characters.")
            return
        ctx.temp["name"] = name
        await self.go_to(ctx, WorkerStep.ASK_PHOTO)

    async def _ask_photo(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "📸 Send a clear photo of yourself so customers know who to expect, or tap Skip.",
            [SKIP_BUTTON, BACK_BUTTON, MENU_BUTTON],
        )

    async def _on_photo(self, ctx: FlowContext, message: IncomingMessage) -> None:
        if is_skip(message):
            ctx.temp["photo_url"] = None
            await self._after_photo(ctx)
            return
        if not message.is_image:
            await self.handle_invalid_input(ctx, message, "📸 Please send a photo, or tap Skip.")
            return
        stored = await self.services.media.download_and_store(message.media_id(), "workers")
        if not stored.success:
            logger.warning("Worker photo upload failed for %s: %s", mask_phone(ctx.phone), stored.error)
            await self.handle_invalid_input(ctx, message, "😕 We couldn't save that photo. Send it again or tap Skip.")
            return
        ctx.temp["photo_url"] = stored.url
        await self._after_photo(ctx)

    async def _after_photo(self, ctx: FlowContext) -> None:
        if self._has_location(ctx):
            await self.go_to(ctx, WorkerStep.ASK_VEHICLE)
        else:
            await self.go_to(ctx, WorkerStep.ASK_LOCATION)

    async def _ask_location(self, ctx: FlowContext) -> None:
        await ctx.send.request_location(ctx.phone, "📍 Share the location you usually work around.")

    async def _on_location(self, ctx: FlowContext, message: IncomingMessage) -> None:
        coords = message.coordinates()
        if coords is None:
            await self.handle_invalid_input(ctx, message, "📍 Please share your location to continue.")
            return
        ctx.temp["latitude"] = coords["lat"]
        ctx.temp["longitude"] = coords["lng"]
        await self.go_to(ctx, WorkerStep.ASK_VEHICLE)

    # ── ask_vehicle ──────────────────────────────────────────

    async def _ask_vehicle(self, ctx: FlowContext) -> None:
        await ctx.send.send_buttons(
            ctx.phone,
            "🛵 Do you have a vehicle for jobs?",
            [{"id": f"vehicle_{code}", "title": title} for code, (title, _) in VEHICLE_TYPES.items()],
        )

    async def _on_vehicle(self, ctx: FlowContext, message: IncomingMessage) -> None:
        vehicle = self.selection_or_text(message, VEHICLE_KEYWORDS, id_prefix="vehicle_")
        if vehicle is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please tap one of the vehicle options.")
            return
        ctx.temp["vehicle_type"] = vehicle
        await self.go_to(ctx, WorkerStep.ASK_JOB_TYPES)

    # ── ask_job_types ────────────────────────────────────────

    async def _ask_job_types(self, ctx: FlowContext) -> None:
        chosen = ctx.temp.get("job_types") or []
        rows = [
            {"id": f"{JOB_TYPE_PREFIX}{code}", "title": f"✅ {title}" if code in chosen else title}
            for code, (title, _) in JOB_TYPES.items()
        ]
        body = "🧰 *What jobs can you do?*\n\nTap a job to add or remove it, then tap *Done*."
        if chosen:
            body += "\n\nSelected: " + ", ".join(option_title(JOB_TYPES, c) for c in chosen)
            rows.append({"id": JOB_TYPES_DONE_ID, "title": "✔️ Done"})
        await ctx.send.send_list(ctx.phone, body, "Job Types", [{"title": "Jobs", "rows": rows}])

    async def _on_job_types(self, ctx: FlowContext, message: IncomingMessage) -> None:
        chosen = list(ctx.temp.get("job_types") or [])
        selection = message.selection_id()
        text = (message.text_content() or "").strip().lower()
        if selection == JOB_TYPES_DONE_ID or (selection is None and text in DONE_WORDS):
            if not chosen:
                await self.handle_invalid_input(ctx, message, "⚠️ Please pick at least one job type.")
                return
            await self.go_to(ctx, WorkerStep.ASK_AVAILABILITY)
            return

        code = self.selection_or_text(message, JOB_TYPE_KEYWORDS, id_prefix=JOB_TYPE_PREFIX)
        if code is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose a job from the list.")
            return
        if code in chosen:
            chosen.remove(code)
        else:
            chosen.append(code)
        await self.store.merge_temp_data(ctx.session, {"job_types": chosen})
        await self.prompt_current_step(ctx)

    # ── ask_availability ─────────────────────────────────────

    async def _ask_availability(self, ctx: FlowContext) -> None:
        rows = [{"id": f"avail_{code}", "title": title} for code, (title, _) in WORKER_AVAILABILITY.items()]
        await ctx.send.send_list(
            ctx.phone,
            "🕒 When are you usually available?",
            "Availability",
            [{"title": "Availability", "rows": rows}],
        )

    async def _on_availability(self, ctx: FlowContext, message: IncomingMessage) -> None:
        availability = self.selection_or_text(message, AVAILABILITY_KEYWORDS, id_prefix="avail_")
        if availability is None:
            await self.handle_invalid_input(ctx, message, "⚠️ Please choose an option from the list.")
            return
        ctx.temp["availability"] = availability
        await self.go_to(ctx, WorkerStep.REVIEW)

    # ── review ───────────────────────────────────────────────

    async def _show_review(self, ctx: FlowContext) -> None:
        t = ctx.temp
        jobs = ", ".join(option_title(JOB_TYPES, c) for c in t.get("job_types") or []) or "-"
        await ctx.send.send_buttons(
            ctx.phone,
            "📋 *Please confirm your worker profile*\n\n"
            f"Name: {t.get('name')}\n"
            f"Photo: {'Added' if t.get('photo_url') else 'None'}\n"
            f"Vehicle: {option_title(VEHICLE_TYPES, t.get('vehicle_type'))}\n"
            f"Jobs: {jobs}\n"
            f"Available: {option_title(WORKER_AVAILABILITY, t.get('availability'))}",
            review_buttons(confirm_title="✅ Register"),
        )

    async def _on_review(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_review(ctx, message, self._register)

    async def _register(self, ctx: FlowContext) -> None:
        t = ctx.temp
        result = await self.services.users.register_worker(
            ctx.phone,
            t["name"],
            t.get("latitude"),
            t.get("longitude"),
            {
                "photo_url": t.get("photo_url"),
                "vehicle_type": t.get("vehicle_type", "none"),
                "job_types": list(t.get("job_types") or []),
                "availability": t.get("availability", "flexible"),
            },
        )
        if result.kind == ResultKind.NOT_ACTIONABLE:
            await ctx.send.send_text(ctx.phone, "👷 You're already registered as a worker.")
            await self.exit_to_main_menu(ctx)
            return
        if not result.is_ok:
            await self.fail(ctx, result.message, "register_worker")
            return

        ctx.user = result.value
        await self.store.link_user(ctx.session, ctx.user.id)
        logger.info("Worker profile created for %s", mask_phone(ctx.phone))
        await self.complete(ctx, WorkerStep.DONE)
        await self._show_done(ctx)

    # ── done ─────────────────────────────────────────────────

    async def _show_done(self, ctx: FlowContext) -> None:
        name = ctx.user.name if ctx.user else ""
        await ctx.send.send_buttons(
            ctx.phone,
            f"🎉 *You're registered as a worker, {name}!*\n\nWe'll message you when a job comes up nearby.",
            [MENU_BUTTON],
        )

    async def _on_done(self, ctx: FlowContext, message: IncomingMessage) -> None:
        await self.handle_terminal(ctx, message, {})
