from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ratebridge.core.db import db_session
from ratebridge.core.errors import DataNotFoundError, InvalidInputError
from ratebridge.modules.conversion.schemas import ConversionOut, ConvertIn
from ratebridge.modules.conversion.service import convert_amount

router = APIRouter(tags=["conversion"])


@router.post("/convert", response_model=ConversionOut)
def convert(payload: ConvertIn, session: Session = Depends(db_session)) -> ConversionOut:
    try:
        result = convert_amount(
            session,
            amount=payload.amount,
            from_currency=payload.from_currency,
            to_currency=payload.to_currency,
        )
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except DataNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return ConversionOut(**result.as_dict())
