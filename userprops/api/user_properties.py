"""User properties API.

PUT    /api/user-properties/         create or update a user property
GET    /api/user-properties/values   materialized values of one property
GET    /api/user-properties/         all properties of a workspace
DELETE /api/user-properties/         delete a property and its values

Protected (reserved) names are rejected with 400 on write and reported as
404 on delete.
"""

from fastapi import APIRouter, Depends, Query, Response, status

from userprops.features.user_properties.service import (
    UserPropertyService,
    get_user_property_service,
)
from userprops.models.user_property import (
    DeleteUserPropertyRequest,
    GetUserPropertiesResponse,
    GetUserPropertyValuesResponse,
    UpsertUserPropertyResource,
    UserPropertyResource,
)


router = APIRouter(prefix="/api/user-properties", tags=["user-properties"])


@router.put("/", response_model=UserPropertyResource, response_model_exclude_none=True)
def upsert_user_property(
    body: UpsertUserPropertyResource,
    service: UserPropertyService = Depends(get_user_property_service),
):
    """Create or update a user property."""
    return service.upsert(body)


@router.get("/values", response_model=GetUserPropertyValuesResponse)
def list_user_property_values(
    property_id: str = Query(..., alias="propertyId"),
    workspace_id: str = Query(..., alias="workspaceId"),
    service: UserPropertyService = Depends(get_user_property_service),
):
    """Get all values recorded for a property."""
    values = service.list_values(property_id, workspace_id)
    return GetUserPropertyValuesResponse(values=values)


@router.get("/", response_model=GetUserPropertiesResponse, response_model_exclude_none=True)
def list_user_properties(
    workspace_id: str = Query(..., alias="workspaceId"),
    service: UserPropertyService = Depends(get_user_property_service),
):
    """Get all user properties of a workspace."""
    properties = service.list_definitions(workspace_id)
    return GetUserPropertiesResponse(properties=properties)


@router.delete("/", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_user_property(
    body: DeleteUserPropertyRequest,
    service: UserPropertyService = Depends(get_user_property_service),
):
    """Delete a user property."""
    service.delete(body.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
