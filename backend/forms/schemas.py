"""
Form schemas for entity creation/edit and privileged payloads.

Why:
    Client forms validate for UX; the gateway re-validates the same constraints
    on the server. Keeping one set of pydantic models makes both sides agree on
    field sets, minimum lengths, email shape, non-negative costs, enumerated
    statuses and conditional rules.

Wire format:
    Request bodies use the camelCase keys of the web client (`displayName`,
    `businessId`, ...). Models accept snake_case too (`populate_by_name`).

Errors:
    `flatten_errors` turns a pydantic `ValidationError` into the
    `{"formErrors": [...], "fieldErrors": {field: [...]}}` shape shown inline
    per field by the client.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, ValidationInfo, model_validator
from pydantic.functional_validators import field_validator

from identity_access.domain import ALLOWED_ROLES, ROLES_REQUIRING_BUSINESS, SUPERADMIN

BUSINESS_TYPES = (
    "Comercio",
    "Servicios",
    "Manufactura",
    "Agricultura",
    "Bienes raíces",
    "Turismo",
    "Minera",
    "Tecnología e informática",
    "Finanzas",
    "Energía",
    "Construcción",
    "Transporte y logística",
    "Otro",
)

# Validation context flag: the business is taken from the caller, not the form.
BUSINESS_FROM_CALLER = "business_from_caller"

MembershipStatus = Literal["active", "inactive", "pending_payment", "cancelled"]
BoxStatus = Literal["available", "unavailable"]


class _Form(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _digits(v: Optional[str], *, label: str) -> Optional[str]:
    if v is not None and not v.isdigit():
        raise ValueError(f"{label} solo debe contener números.")
    return v


# --- Auth forms -------------------------------------------------------------------

class SignupForm(_Form):
    name: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirm_password: str = Field(..., alias="confirmPassword")
    accept_terms: bool = Field(..., alias="acceptTerms")

    @field_validator("accept_terms")
    @classmethod
    def _terms_accepted(cls, v: bool) -> bool:
        if v is not True:
            raise ValueError("Debes aceptar el tratamiento de tus datos personales.")
        return v

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Las contraseñas no coinciden.")
        return self


class LoginForm(_Form):
    email: EmailStr
    password: str = Field(..., min_length=1)


# --- Admin forms ------------------------------------------------------------------

class BusinessForm(_Form):
    name: str = Field(..., min_length=3)
    contact_email: EmailStr = Field(..., alias="contactEmail")
    ruc: Optional[str] = Field(default=None, min_length=11, max_length=11)
    razon_social: Optional[str] = Field(default=None, alias="razonSocial", min_length=3)
    department: str = Field(..., min_length=1)
    province: str = Field(..., min_length=1)
    district: str = Field(..., min_length=1)
    address: Optional[str] = Field(default=None, min_length=5)
    manager_name: Optional[str] = Field(default=None, alias="managerName", min_length=3)
    manager_dni: Optional[str] = Field(default=None, alias="managerDni", min_length=8, max_length=15)
    business_type: Literal[BUSINESS_TYPES] = Field(..., alias="businessType")  # type: ignore[valid-type]

    @field_validator("ruc", "razon_social", "address", "manager_name", "manager_dni", mode="before")
    @classmethod
    def _optional_blank(cls, v):
        return _blank_to_none(v)

    @field_validator("ruc")
    @classmethod
    def _ruc_digits(cls, v):
        return _digits(v, label="El RUC")

    @field_validator("manager_dni")
    @classmethod
    def _manager_dni_digits(cls, v):
        return _digits(v, label="DNI/CE del gerente")


class PlatformUserForm(_Form):
    """Profile fields of a platform user.

    A business id is required when a business-scoped role (business_admin,
    staff, host) is selected, unless superadmin is selected as well or the
    validation context sets `BUSINESS_FROM_CALLER`.
    """

    dni: str = Field(..., min_length=7, max_length=15)
    name: str = Field(..., min_length=3)
    email: EmailStr
    roles: List[str] = Field(..., min_length=1)
    business_id: Optional[str] = Field(default=None, alias="businessId")

    @field_validator("roles", mode="before")
    @classmethod
    def _scalar_role(cls, v):
        return [v] if isinstance(v, str) else v

    @field_validator("roles")
    @classmethod
    def _known_roles(cls, v: List[str]) -> List[str]:
        unknown = [r for r in v if r not in ALLOWED_ROLES]
        if unknown:
            raise ValueError(f"Rol desconocido: {', '.join(unknown)}")
        # keep order, drop duplicates
        return list(dict.fromkeys(v))

    @field_validator("business_id", mode="before")
    @classmethod
    def _business_blank(cls, v):
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _business_required(self, info: ValidationInfo):
        if (info.context or {}).get(BUSINESS_FROM_CALLER):
            return self
        needs_business = any(r in ROLES_REQUIRING_BUSINESS for r in self.roles)
        if needs_business and SUPERADMIN not in self.roles and not self.business_id:
            raise ValueError(
                "businessId: Debes seleccionar un negocio para roles de 'Admin Negocio', 'Staff' o 'Anfitrión'."
            )
        return self


class SocioVipMemberForm(_Form):
    name: str = Field(..., min_length=2)
    surname: str = Field(..., min_length=2)
    dni: str = Field(..., min_length=7, max_length=15)
    phone: str = Field(..., min_length=7, pattern=r"^\+?[0-9\s\-()]*$")
    dob: date
    email: EmailStr
    address: Optional[str] = None
    profession: Optional[str] = None
    preferences: Optional[str] = None
    loyalty_points: float = Field(default=0, alias="loyaltyPoints", ge=0)
    membership_status: MembershipStatus = Field(..., alias="membershipStatus")

    def preference_list(self) -> List[str]:
        return [p.strip() for p in (self.preferences or "").split(",") if p.strip()]


# --- Business panel forms ---------------------------------------------------------

class _DatedEntityForm(_Form):
    name: str = Field(..., min_length=3)
    description: str = Field(..., min_length=10)
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    is_active: bool = Field(default=True, alias="isActive")
    image_url: Optional[str] = Field(default=None, alias="imageUrl", pattern=r"^https?://\S+$")
    ai_hint: Optional[str] = Field(default=None, alias="aiHint")
    terms_and_conditions: Optional[str] = Field(default=None, alias="termsAndConditions")

    @field_validator("image_url", mode="before")
    @classmethod
    def _image_blank(cls, v):
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _end_not_before_start(self):
        # Calendar dates only; time of day is irrelevant here.
        if self.end_date.date() < self.start_date.date():
            raise ValueError("endDate: La fecha de fin no puede ser anterior a la fecha de inicio.")
        return self


class PromotionForm(_DatedEntityForm):
    usage_limit: Optional[int] = Field(default=None, alias="usageLimit", ge=0)


class EventForm(_DatedEntityForm):
    max_attendance: Optional[int] = Field(default=None, alias="maxAttendance", ge=0)


class PromoterLinkForm(_Form):
    promoter_name: str = Field(..., alias="promoterName", min_length=3)
    promoter_email: EmailStr = Field(..., alias="promoterEmail")
    promoter_phone: Optional[str] = Field(default=None, alias="promoterPhone")
    promoter_dni: Optional[str] = Field(default=None, alias="promoterDni")
    commission_rate: Optional[str] = Field(default=None, alias="commissionRate")


class TicketTypeForm(_Form):
    name: str = Field(..., min_length=3)
    cost: float = Field(..., ge=0)
    description: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)


class EventBoxForm(_Form):
    name: str = Field(..., min_length=2)
    cost: float = Field(..., ge=0)
    description: Optional[str] = None
    status: BoxStatus
    capacity: Optional[int] = Field(default=None, ge=1)
    seller_name: Optional[str] = Field(default=None, alias="sellerName")
    owner_name: Optional[str] = Field(default=None, alias="ownerName")
    owner_dni: Optional[str] = Field(default=None, alias="ownerDni", min_length=7, max_length=15)

    @field_validator("owner_dni", mode="before")
    @classmethod
    def _owner_dni_blank(cls, v):
        return _blank_to_none(v)


class BatchBoxForm(_Form):
    prefix: str = Field(..., min_length=1)
    from_number: int = Field(..., alias="fromNumber", ge=1)
    to_number: int = Field(..., alias="toNumber", ge=1)
    cost: float = Field(..., ge=0)
    capacity: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None
    status: BoxStatus

    @model_validator(mode="after")
    def _range_ordered(self):
        if self.to_number < self.from_number:
            raise ValueError("toNumber: 'Hasta el número' debe ser mayor o igual que 'Desde el número'.")
        return self

    def box_names(self) -> List[str]:
        return [f"{self.prefix} {n}" for n in range(self.from_number, self.to_number + 1)]


# --- Gateway payloads -------------------------------------------------------------

class _AccountPayload(_Form):
    email: EmailStr
    password: str = Field(..., min_length=6)
    display_name: str = Field(..., alias="displayName", min_length=2)


class CreatePlatformUserPayload(_AccountPayload):
    profile: PlatformUserForm


class StaffProfile(_Form):
    dni: str
    name: str = Field(..., min_length=3)
    email: EmailStr
    roles: List[str]

    @field_validator("roles", mode="before")
    @classmethod
    def _scalar_role(cls, v):
        return [v] if isinstance(v, str) else v


class CreateStaffPayload(_AccountPayload):
    profile: StaffProfile


class PromoterProfileData(_Form):
    dni: str
    name: str = Field(..., min_length=3)
    email: EmailStr
    phone: Optional[str] = None
    commission_rate: Optional[str] = Field(default=None, alias="commissionRate")


class CreatePromoterPayload(_AccountPayload):
    profile: PromoterProfileData


class DniLookupPayload(_Form):
    dni: str = Field(..., pattern=r"^\d{8}$")


class SessionSyncPayload(_Form):
    id_token: Optional[str] = Field(default=None, alias="idToken")


class CreateCodesPayload(_Form):
    count: int = Field(..., ge=1, le=50)
    observation: Optional[str] = None

    @field_validator("observation", mode="before")
    @classmethod
    def _trim_observation(cls, v):
        v = _blank_to_none(v)
        return v.strip() if isinstance(v, str) else v


class RedeemCodePayload(_Form):
    """Client data recorded when a promoter code is claimed."""

    code: str = Field(..., min_length=1)
    dni: str = Field(..., min_length=7, max_length=15)
    name: str = Field(..., min_length=2)
    surname: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("dni")
    @classmethod
    def _dni_digits(cls, v):
        return _digits(v, label="El DNI")

    @field_validator("surname", "phone", mode="before")
    @classmethod
    def _optional_blank(cls, v):
        return _blank_to_none(v)


class ValidateCodePayload(_Form):
    code_id: str = Field(..., alias="codeId", min_length=1)
    is_vip_candidate: bool = Field(default=False, alias="isVipCandidate")


FORM_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "signup": SignupForm,
    "login": LoginForm,
    "business": BusinessForm,
    "platform-user": PlatformUserForm,
    "socio-vip-member": SocioVipMemberForm,
    "promotion": PromotionForm,
    "event": EventForm,
    "promoter": PromoterLinkForm,
    "ticket-type": TicketTypeForm,
    "event-box": EventBoxForm,
    "batch-boxes": BatchBoxForm,
}


def flatten_errors(exc: ValidationError) -> dict:
    """Flatten pydantic errors into form-level and per-field message lists.

    Model-level validators prefix their message with `field: ` to target a
    field; other model-level messages land in `formErrors`.
    """
    form_errors: List[str] = []
    field_errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if not isinstance(p, int)]
        msg = str(err.get("msg", ""))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        if ": " in msg:
            target, _, rest = msg.partition(": ")
            if target and " " not in target:
                loc, msg = loc + [target], rest
        if not loc:
            form_errors.append(msg)
            continue
        field_errors.setdefault(".".join(loc), []).append(msg)
    return {"formErrors": form_errors, "fieldErrors": field_errors}
