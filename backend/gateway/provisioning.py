"""
Privileged user provisioning (steps 5-8).

`UserProvisioningService` receives an already authenticated `Caller` and a
validated payload. Per operation it:
    4. authorizes the caller and resolves roles/business for the new user;
    5. rejects emails that already have an account;
    6. creates the identity account (marked verified);
    7. writes the Profile keyed by the new uid;
    8. returns `{"uid", "message"}`.

Permissions:
    create_platform_user -> superadmin, or business_admin (staff/host only,
    own business). create_staff / create_promoter -> business_admin or staff
    with an associated business.

Failure handling:
    A profile write that fails after the account exists is not rolled back
    inline; a `ReconciliationJob` is queued and `Inconsistency` is raised.
"""
from __future__ import annotations

from typing import List, Optional, Protocol, Tuple
import logging

from forms.schemas import CreatePlatformUserPayload, CreatePromoterPayload, CreateStaffPayload
from identity_access.admin_client import AdminClientError, IdentityRecord
from identity_access.domain import PROMOTER, PROMOTER_LINKS_COLLECTION
from identity_access.profiles import Profile, ProfileRepository, utc_now_iso
from identity_access.stores import DocumentNotFound, DocumentStore, DocumentStoreError

from .callers import Caller
from .errors import Conflict, Inconsistency, NotFound, UpstreamFailure, ValidationFailed
from .policy import Assignment, require_business_member, resolve_staff_assignment, resolve_user_assignment
from .reconciliation import ReconciliationJob, ReconciliationQueue

logger = logging.getLogger("cloverpass.gateway.provisioning")


class AccountAdmin(Protocol):
    def get_user_by_email(self, email: str) -> Optional[IdentityRecord]: ...

    def create_user(self, *, email: str, password: str, display_name: str | None = None, email_verified: bool = True) -> str: ...

    def delete_user(self, uid: str) -> None: ...


class UserProvisioningService:
    def __init__(
        self,
        accounts: AccountAdmin,
        profiles: ProfileRepository,
        store: DocumentStore,
        queue: ReconciliationQueue,
    ) -> None:
        self.accounts = accounts
        self.profiles = profiles
        self.store = store
        self.queue = queue

    # --- operations ----------------------------------------------------------------

    def create_platform_user(self, caller: Caller, payload: CreatePlatformUserPayload) -> dict:
        form = payload.profile
        assignment = resolve_user_assignment(caller.profile, form.roles, form.business_id)
        uid = self._provision(
            caller,
            email=str(payload.email),
            password=payload.password,
            display_name=payload.display_name,
            profile=Profile(
                uid="",
                name=form.name,
                email=str(payload.email),
                dni=form.dni,
                roles=assignment.roles,
                business_id=assignment.business_id,
            ),
        )
        return {"uid": uid, "message": f"Usuario {payload.email} creado con éxito."}

    def create_staff(self, caller: Caller, payload: CreateStaffPayload) -> dict:
        assignment = resolve_staff_assignment(caller.profile, payload.profile.roles)
        uid = self._provision(
            caller,
            email=str(payload.email),
            password=payload.password,
            display_name=payload.display_name,
            profile=self._profile_for(payload.profile.dni, payload.profile.name, str(payload.email), assignment),
        )
        return {"uid": uid, "message": f"Miembro del personal {payload.email} creado con éxito."}

    def create_promoter(self, caller: Caller, payload: CreatePromoterPayload) -> dict:
        """Create a promoter account plus its link to the caller's business."""
        business_id = require_business_member(caller.profile)
        data = payload.profile
        assignment = Assignment(roles=[PROMOTER], business_id=None)
        link = {
            "businessId": business_id,
            "promoterDni": data.dni,
            "promoterName": data.name,
            "promoterEmail": str(payload.email),
            "promoterPhone": data.phone,
            "commissionRate": data.commission_rate,
            "isActive": True,
            "isPlatformUser": True,
        }
        uid = self._provision(
            caller,
            email=str(payload.email),
            password=payload.password,
            display_name=payload.display_name,
            profile=self._profile_for(data.dni, data.name, str(payload.email), assignment),
            link=link,
        )
        return {"uid": uid, "message": f"Promotor {payload.email} creado y vinculado con éxito."}

    def update_last_login(self, uid: str) -> dict:
        try:
            stamp = self.profiles.touch_last_login(uid)
        except DocumentNotFound as exc:
            raise NotFound("No se encontró el perfil del usuario.", error="profile_not_found") from exc
        except DocumentStoreError as exc:
            logger.error("last_login_write_failed uid=%s", uid)
            raise UpstreamFailure(debug=str(exc)) from exc
        return {"message": "Último inicio de sesión actualizado.", "lastLogin": stamp}

    def register_self_signup(self, uid: str, *, name: str, email: str) -> Profile:
        """Write the Profile of a self-registered promoter (account already created)."""
        profile = Profile(uid=uid, name=name, email=email, roles=[PROMOTER])
        self._write_profile(profile, [], actor=uid)
        return profile

    # --- shared flow ---------------------------------------------------------------

    @staticmethod
    def _profile_for(dni: str, name: str, email: str, assignment: Assignment) -> Profile:
        return Profile(
            uid="",
            name=name,
            email=email,
            dni=dni,
            roles=list(assignment.roles),
            business_id=assignment.business_id,
        )

    def _provision(
        self,
        caller: Caller,
        *,
        email: str,
        password: str,
        display_name: str,
        profile: Profile,
        link: Optional[dict] = None,
    ) -> str:
        self._ensure_email_free(email)
        uid = self._create_account(email=email, password=password, display_name=display_name)
        profile.uid = uid
        extras: List[Tuple[str, dict]] = []
        if link is not None:
            extras.append((PROMOTER_LINKS_COLLECTION, dict(link, platformUserUid=uid, joinDate=utc_now_iso())))
        self._write_profile(profile, extras, actor=caller.uid)
        return uid

    def _write_profile(self, profile: Profile, extras: List[Tuple[str, dict]], *, actor: str) -> None:
        """Persist the profile (and linked documents); queue reconciliation on failure."""
        uid = profile.uid
        document = profile.to_document()
        try:
            self.profiles.write(uid, document)
            for collection, doc in extras:
                self.store.add(collection, doc)
        except Exception as exc:
            job = self.queue.enqueue(
                ReconciliationJob(uid=uid, collection=self.profiles.collection, document=document, extra_documents=extras)
            )
            logger.error(
                "profile_write_failed uid=%s actor=%s job=%s error=%s",
                uid, actor, job.job_id, exc.__class__.__name__,
            )
            raise Inconsistency(debug=str(exc)) from exc
        logger.info("user_provisioned uid=%s actor=%s roles=%s", uid, actor, ",".join(profile.roles))

    def _ensure_email_free(self, email: str) -> None:
        try:
            existing = self.accounts.get_user_by_email(email)
        except AdminClientError as exc:
            logger.error("email_lookup_failed code=%s", exc.code)
            raise _upstream(exc) from exc
        if existing is not None:
            raise Conflict()

    def _create_account(self, *, email: str, password: str, display_name: str) -> str:
        try:
            return self.accounts.create_user(email=email, password=password, display_name=display_name, email_verified=True)
        except AdminClientError as exc:
            if exc.code == "email_exists":
                raise Conflict() from exc
            if exc.code == "invalid_password":
                raise ValidationFailed(
                    "La contraseña no cumple los requisitos.", fields={"fieldErrors": {"password": [exc.detail or "invalid"]}, "formErrors": []}
                ) from exc
            logger.error("account_create_failed code=%s", exc.code)
            raise _upstream(exc) from exc


def _upstream(exc: AdminClientError) -> UpstreamFailure:
    if exc.code in ("not_configured", "credentials_unavailable"):
        return UpstreamFailure(
            "El servicio de cuentas no está configurado en el servidor.", error="not_configured", debug=exc.detail
        )
    return UpstreamFailure(debug=exc.code)
