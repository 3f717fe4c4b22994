"""
Resolve the billable fee structure and discounts for a student's ledger.

Class defaults come from ClassFeeStructure rows for the class and academic year; caller-supplied
amounts override them. Every lookup is scoped to the caller's school.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ReferenceNotFound, ValidationError
from app.core.models import ClassFeeStructure, SchoolClass, Student

from .computation import FEE_COMPONENTS, FLAT_DISCOUNTS, ZERO, to_decimal
from .schemas import DiscountsIn, FeeStructureIn


@dataclass
class FeeDraft:
    """Fee structure + discounts ready to be stamped onto a new ledger."""

    student: Student
    school_class: SchoolClass
    fee_structure: Dict[str, Decimal]
    discounts: Dict[str, Decimal] = field(default_factory=dict)
    discount_reason: Optional[str] = None


async def get_student_in_school(db: AsyncSession, school_id: UUID, student_id: UUID) -> Student:
    student = (
        await db.execute(select(Student).where(Student.id == student_id, Student.tenant_id == school_id))
    ).scalar_one_or_none()
    if not student:
        raise ReferenceNotFound("Student not found in this school")
    return student


async def get_class_in_school(db: AsyncSession, school_id: UUID, class_id: UUID) -> SchoolClass:
    school_class = (
        await db.execute(select(SchoolClass).where(SchoolClass.id == class_id, SchoolClass.tenant_id == school_id))
    ).scalar_one_or_none()
    if not school_class:
        raise ReferenceNotFound("Class not found in this school")
    return school_class


async def class_default_amounts(
    db: AsyncSession,
    school_id: UUID,
    class_id: UUID,
    academic_year: str,
) -> Dict[str, Decimal]:
    rows = (
        await db.execute(
            select(ClassFeeStructure.component, ClassFeeStructure.amount).where(
                ClassFeeStructure.tenant_id == school_id,
                ClassFeeStructure.class_id == class_id,
                ClassFeeStructure.academic_year == academic_year,
                ClassFeeStructure.is_active.is_(True),
            )
        )
    ).all()
    return {component: to_decimal(amount) for component, amount in rows if component in FEE_COMPONENTS}


def merge_fee_structure(defaults: Dict[str, Decimal], overrides: Optional[FeeStructureIn]) -> Dict[str, Decimal]:
    supplied = overrides.model_dump(exclude_none=True) if overrides else {}
    structure = {name: to_decimal(supplied.get(name, defaults.get(name, ZERO))) for name in FEE_COMPONENTS}
    if "tuition_fee" not in supplied and "tuition_fee" not in defaults:
        raise ValidationError("Tuition fee is required: supply tuitionFee or define it for the class")
    return structure


def resolve_discounts(discounts: Optional[DiscountsIn]) -> Dict[str, Decimal]:
    supplied = discounts.model_dump(exclude_none=True) if discounts else {}
    resolved = {"scholarship_percentage": to_decimal(supplied.get("scholarship_percentage"))}
    for name in FLAT_DISCOUNTS:
        resolved[name] = to_decimal(supplied.get(name))
    return resolved


async def resolve_fee_structure(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
    class_id: UUID,
    academic_year: str,
    overrides: Optional[FeeStructureIn] = None,
    discounts: Optional[DiscountsIn] = None,
) -> FeeDraft:
    student = await get_student_in_school(db, school_id, student_id)
    school_class = await get_class_in_school(db, school_id, class_id)
    defaults = await class_default_amounts(db, school_id, class_id, academic_year)
    reason = ((discounts.discount_reason if discounts else None) or "").strip() or None
    return FeeDraft(
        student=student,
        school_class=school_class,
        fee_structure=merge_fee_structure(defaults, overrides),
        discounts=resolve_discounts(discounts),
        discount_reason=reason,
    )
