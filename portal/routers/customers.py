from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, get_current_user, require_role
from portal.models.customer import Customer
from portal.models.customer_address import Address
from portal.models.customer_contact import Contact
from portal.models.user import User
from portal.services.audit import log_action
from portal.services.authorization_service import MANAGER_ROLES, STAFF_ROLES, AuthorizationService
from portal.services.cascade import delete_entity
from portal.services.pagination import DEFAULT_PAGE_SIZE, paginate

router = APIRouter(prefix="/api/v1/customers", tags=["customers"])

CustomerStatus = Literal["ACTIVE", "INACTIVE", "SUSPENDED"]
CustomerSize = Literal["STARTUP", "SME", "ENTERPRISE"]
AddressType = Literal["BUSINESS", "BILLING", "SHIPPING", "OTHER"]


class CustomerCreate(BaseModel):
    legal_name: str = Field(..., min_length=1, max_length=200)
    trade_name: Optional[str] = None
    vat_id: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[CustomerSize] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: CustomerStatus = "ACTIVE"


class CustomerUpdate(BaseModel):
    legal_name: Optional[str] = Field(None, min_length=1, max_length=200)
    trade_name: Optional[str] = None
    vat_id: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[CustomerSize] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[CustomerStatus] = None

    @field_validator("legal_name", "tags", "status")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class AddressCreate(BaseModel):
    type: AddressType = "BUSINESS"
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    is_default: bool = False


class ContactCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    position: Optional[str] = None
    department: Optional[str] = None
    is_primary: bool = False


def serialize_customer(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "legal_name": customer.legal_name,
        "trade_name": customer.trade_name,
        "vat_id": customer.vat_id,
        "industry": customer.industry,
        "size": customer.size,
        "notes": customer.notes,
        "status": customer.status,
        "tags": customer.tags or [],
        "created_at": customer.created_at,
        "updated_at": customer.updated_at,
    }


def _serialize_address(address: Address) -> Dict[str, Any]:
    return {
        "id": address.id,
        "customer_id": address.customer_id,
        "type": address.type,
        "street": address.street,
        "city": address.city,
        "postal_code": address.postal_code,
        "country": address.country,
        "is_default": address.is_default,
    }


def _serialize_contact(contact: Contact) -> Dict[str, Any]:
    return {
        "id": contact.id,
        "customer_id": contact.customer_id,
        "name": contact.name,
        "email": contact.email,
        "phone": contact.phone,
        "position": contact.position,
        "department": contact.department,
        "is_primary": contact.is_primary,
    }


def _get_customer_or_404(db: Session, customer_id: int) -> Customer:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return customer


@router.get("")
def list_customers(
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    industry: Optional[str] = None,
    size: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    _user: User = Depends(require_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    query = db.query(Customer)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Customer.legal_name.ilike(pattern),
                Customer.trade_name.ilike(pattern),
                Customer.vat_id.ilike(pattern),
            )
        )
    if status_filter and status_filter != "all":
        query = query.filter(Customer.status == status_filter)
    if industry:
        query = query.filter(Customer.industry == industry)
    if size and size != "all":
        query = query.filter(Customer.size == size)

    rows, pagination = paginate(query.order_by(Customer.created_at.desc(), Customer.id.desc()), page, limit)
    return {"data": [serialize_customer(row) for row in rows], "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    customer = Customer(**payload.model_dump(), created_at=now, updated_at=now)
    db.add(customer)
    db.flush()

    log_action(
        db,
        action="CREATE",
        entity_type="customer",
        entity_id=customer.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"after": payload.model_dump()},
    )
    db.commit()
    db.refresh(customer)
    return serialize_customer(customer)


@router.get("/{customer_id}")
def get_customer(
    customer_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=customer_id)
    customer = _get_customer_or_404(db, customer_id)

    result = serialize_customer(customer)
    result["addresses"] = [
        _serialize_address(row)
        for row in db.query(Address).filter(Address.customer_id == customer_id).order_by(Address.id.asc()).all()
    ]
    result["contacts"] = [
        _serialize_contact(row)
        for row in db.query(Contact).filter(Contact.customer_id == customer_id).order_by(Contact.id.asc()).all()
    ]
    return result


@router.put("/{customer_id}")
def update_customer(
    customer_id: int,
    payload: CustomerUpdate,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    customer = _get_customer_or_404(db, customer_id)
    before = serialize_customer(customer)

    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(customer, key, value)
    customer.updated_at = datetime.utcnow()
    db.flush()

    after = serialize_customer(customer)
    log_action(
        db,
        action="UPDATE",
        entity_type="customer",
        entity_id=customer.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"before": before, "after": after},
    )
    db.commit()
    return after


@router.delete("/{customer_id}")
def delete_customer(
    customer_id: int,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    result = delete_entity(
        db,
        kind="customer",
        entity_id=customer_id,
        actor=user,
        ip_address=client_ip(request),
    )
    if result.root_deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return {"message": "Customer deleted successfully", **result.as_dict()}


@router.get("/{customer_id}/addresses")
def list_addresses(
    customer_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=customer_id)
    _get_customer_or_404(db, customer_id)
    rows = db.query(Address).filter(Address.customer_id == customer_id).order_by(Address.id.asc()).all()
    return [_serialize_address(row) for row in rows]


@router.post("/{customer_id}/addresses", status_code=status.HTTP_201_CREATED)
def create_address(
    customer_id: int,
    payload: AddressCreate,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    _get_customer_or_404(db, customer_id)
    if payload.is_default:
        db.query(Address).filter(Address.customer_id == customer_id).update(
            {Address.is_default: False}, synchronize_session=False
        )

    address = Address(customer_id=customer_id, **payload.model_dump())
    db.add(address)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="address",
        entity_id=address.id,
        actor=user,
        ip_address=client_ip(request),
        details={"customer_id": customer_id},
    )
    db.commit()
    db.refresh(address)
    return _serialize_address(address)


@router.get("/{customer_id}/contacts")
def list_contacts(
    customer_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=customer_id)
    _get_customer_or_404(db, customer_id)
    rows = db.query(Contact).filter(Contact.customer_id == customer_id).order_by(Contact.id.asc()).all()
    return [_serialize_contact(row) for row in rows]


@router.post("/{customer_id}/contacts", status_code=status.HTTP_201_CREATED)
def create_contact(
    customer_id: int,
    payload: ContactCreate,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    _get_customer_or_404(db, customer_id)
    if payload.is_primary:
        db.query(Contact).filter(Contact.customer_id == customer_id).update(
            {Contact.is_primary: False}, synchronize_session=False
        )

    contact = Contact(customer_id=customer_id, **payload.model_dump())
    db.add(contact)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="contact",
        entity_id=contact.id,
        actor=user,
        ip_address=client_ip(request),
        details={"customer_id": customer_id},
    )
    db.commit()
    db.refresh(contact)
    return _serialize_contact(contact)
