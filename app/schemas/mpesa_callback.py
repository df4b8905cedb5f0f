"""
Pydantic models for the M-Pesa STK push callback envelope.

Field aliases follow the provider's JSON keys:

    { "Body": { "stkCallback": {
        "MerchantRequestID": ..., "CheckoutRequestID": ...,
        "ResultCode": 0, "ResultDesc": ...,
        "CallbackMetadata": { "Item": [{"Name": ..., "Value": ...}] } } } }
"""
from typing import Optional, List, Union, Dict, Any
from pydantic import BaseModel, Field, ConfigDict


class CallbackItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., alias="Name")
    value: Optional[Union[int, float, str]] = Field(None, alias="Value")


class CallbackMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[CallbackItem] = Field(default_factory=list, alias="Item")


class StkCallback(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    merchant_request_id: Optional[str] = Field(None, alias="MerchantRequestID")
    checkout_request_id: str = Field(..., alias="CheckoutRequestID")
    result_code: int = Field(..., alias="ResultCode")
    result_desc: Optional[str] = Field(None, alias="ResultDesc")
    callback_metadata: Optional[CallbackMetadata] = Field(None, alias="CallbackMetadata")

    def metadata_dict(self) -> Dict[str, Any]:
        """Metadata items keyed by name; provider ordering is not guaranteed."""
        if not self.callback_metadata:
            return {}
        return {item.name: item.value for item in self.callback_metadata.items}


class CallbackBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stk_callback: StkCallback = Field(..., alias="stkCallback")


class MpesaCallbackEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    body: CallbackBody = Field(..., alias="Body")
