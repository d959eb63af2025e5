"""
Media staging, post and publish endpoints
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from api.deps import Services, get_services
from schemas.requests import CreatePostRequest, PublishRequest, StageMediaRequest
from schemas.responses import PostResponse, PublishResponse, StagedMediaResponse
from services.media_relay import check_mime_type
from utils.auth import get_current_user_id
from utils.exceptions import SocialFlowException, handle_platform_error

router = APIRouter()


@router.post("/media", response_model=StagedMediaResponse, status_code=status.HTTP_201_CREATED)
async def stage_media(
    request: StageMediaRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> StagedMediaResponse:
    """Stage raw media and return its fetchable URL"""
    try:
        url = await services.media_relay.stage(request.data, request.mime_type)
    except SocialFlowException as e:
        raise handle_platform_error(e, "media")
    return StagedMediaResponse(url=url, mime_type=check_mime_type(request.mime_type))


@router.post("/posts", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    request: CreatePostRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> PostResponse:
    """Create a post; raw media is staged first"""
    try:
        media = [await services.media_relay.stage_input(item) for item in request.media]
        post = await services.posts.create_post(user_id, request.content, media, request.scheduled_for)
    except SocialFlowException as e:
        raise handle_platform_error(e, "posts")
    return PostResponse.from_post(post, media)


@router.get("/posts/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: UUID,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> PostResponse:
    try:
        post = await services.posts.get_post(post_id, user_id)
    except SocialFlowException as e:
        raise handle_platform_error(e, "posts")
    return PostResponse.from_post(post, await services.posts.list_media(post_id))


@router.post("/posts/{post_id}/publish", response_model=PublishResponse)
async def publish_post(
    post_id: UUID,
    request: PublishRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> PublishResponse:
    """Publish a post to each selected account; outcomes are reported per account"""
    try:
        post = await services.posts.get_post(post_id, user_id)
        results = await services.orchestrator.publish_to_accounts(post, request.account_ids, request.media)
        post = await services.posts.get_post(post_id, user_id)
    except SocialFlowException as e:
        raise handle_platform_error(e, "publish")
    return PublishResponse(post_id=post.id, status=post.status, results=results)


@router.delete("/posts/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: UUID,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
) -> Response:
    try:
        await services.posts.delete_post(post_id, user_id)
    except SocialFlowException as e:
        raise handle_platform_error(e, "posts")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
