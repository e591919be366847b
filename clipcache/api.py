"""REST API endpoints for the media pipeline."""

import asyncio
import io

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from clipcache.errors import CacheCorrupt, SourceNotFound
from clipcache.models.domain import DirectStream
from clipcache.models.dto import (
    AssetDTO,
    CacheEntryDTO,
    CacheListResponse,
    CancelRequestBody,
    CancelResponse,
    ClassificationDTO,
    FailureDTO,
    LoadRequestBody,
    LoadStatusDTO,
    PlaybackDTO,
    PurgeResponse,
    SeekRequestBody,
)
from clipcache.playback.player import SequencePlayer
from clipcache.services.pipeline_service import LoadRequest, PipelineService
from clipcache.services.websocket_service import WebSocketService

router = APIRouter()


def get_pipeline(request: Request) -> PipelineService:
    """Pipeline instance created at startup."""
    return request.app.state.pipeline


def get_websocket_service(request: Request) -> WebSocketService:
    return request.app.state.websocket_service


def load_status(request: LoadRequest) -> LoadStatusDTO:
    """Convert a LoadRequest to its API representation."""
    asset = None
    if request.asset is not None:
        if isinstance(request.asset, DirectStream):
            asset = AssetDTO(type="direct_stream", path=str(request.asset.path))
        else:
            asset = AssetDTO(
                type="frame_sequence",
                path=str(request.asset.frames[0].parent) if request.asset.frames else None,
                frame_count=request.asset.frame_count,
                frame_rate=request.asset.frame_rate,
            )

    failure = None
    if request.failure is not None:
        failure = FailureDTO(
            kind=request.failure.kind,
            message=request.failure.message,
            job_status=request.failure.job_status,
        )

    return LoadStatusDTO(
        target=request.target,
        source_path=request.source_path,
        state=request.state,
        progress=request.progress,
        asset=asset,
        failure=failure,
    )


def playback_status(target: str, player: SequencePlayer) -> PlaybackDTO:
    return PlaybackDTO(
        target=target,
        state=player.state,
        index=player.index,
        frame_count=player.sequence.frame_count,
        frame_rate=player.sequence.frame_rate,
        loop=player.cursor.loop,
        cached_frames=len(player.cache),
    )


def _playback_call(pipeline: PipelineService, target: str, action, *args) -> SequencePlayer:
    """Run a pipeline playback action, translating lookup errors into HTTP errors."""
    try:
        return action(target, *args)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No load request for target '{target}'")
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except TypeError as e:
        raise HTTPException(status_code=409, detail=f"{e}; play it through the playback layer")
    except CacheCorrupt as e:
        raise HTTPException(status_code=410, detail=e.message)


@router.get("/classify", response_model=ClassificationDTO)
async def classify(path: str, pipeline: PipelineService = Depends(get_pipeline)):
    """Classify a source file without loading it."""
    try:
        classification = await asyncio.to_thread(pipeline.classifier.classify, path)
    except SourceNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

    return ClassificationDTO(
        path=str(classification.source.path),
        kind=classification.kind,
        has_alpha=classification.has_alpha,
        codec_name=classification.codec_name,
        pix_fmt=classification.pix_fmt,
        probed=classification.probed,
    )


@router.post("/loads", response_model=LoadStatusDTO, status_code=202)
async def request_load(
    body: LoadRequestBody,
    pipeline: PipelineService = Depends(get_pipeline),
    websocket_service: WebSocketService = Depends(get_websocket_service),
):
    """Start loading a source for a playback target."""
    load = pipeline.request_load(body.source_path, body.target)
    websocket_service.track(load)
    return load_status(load)


@router.get("/loads", response_model=list[LoadStatusDTO])
async def list_loads(pipeline: PipelineService = Depends(get_pipeline)):
    """List the latest load request of every target."""
    return [load_status(r) for r in pipeline.list_requests()]


@router.get("/loads/{target}", response_model=LoadStatusDTO)
async def get_load(target: str, pipeline: PipelineService = Depends(get_pipeline)):
    """Get load status for a playback target."""
    load = pipeline.get_request(target)
    if load is None:
        raise HTTPException(status_code=404, detail=f"No load request for target '{target}'")
    return load_status(load)


@router.post("/loads/cancel", response_model=CancelResponse)
async def cancel_load(body: CancelRequestBody, pipeline: PipelineService = Depends(get_pipeline)):
    """Cancel every load and job for a source."""
    cancelled = await asyncio.to_thread(pipeline.cancel, body.source_path)
    return CancelResponse(source_path=body.source_path, cancelled=cancelled)


@router.post("/playback/{target}/play", response_model=PlaybackDTO)
async def play(target: str, pipeline: PipelineService = Depends(get_pipeline)):
    player = await asyncio.to_thread(_playback_call, pipeline, target, pipeline.play)
    return playback_status(target, player)


@router.post("/playback/{target}/pause", response_model=PlaybackDTO)
async def pause(target: str, pipeline: PipelineService = Depends(get_pipeline)):
    player = await asyncio.to_thread(_playback_call, pipeline, target, pipeline.pause)
    return playback_status(target, player)


@router.post("/playback/{target}/stop", response_model=PlaybackDTO)
async def stop(target: str, pipeline: PipelineService = Depends(get_pipeline)):
    player = await asyncio.to_thread(_playback_call, pipeline, target, pipeline.stop)
    return playback_status(target, player)


@router.post("/playback/{target}/seek", response_model=PlaybackDTO)
async def seek(target: str, body: SeekRequestBody, pipeline: PipelineService = Depends(get_pipeline)):
    player = await asyncio.to_thread(_playback_call, pipeline, target, pipeline.seek, body.index)
    return playback_status(target, player)


@router.get("/playback/{target}", response_model=PlaybackDTO)
async def playback(target: str, pipeline: PipelineService = Depends(get_pipeline)):
    """Advance the cursor to the frame due now and report it."""
    player = await asyncio.to_thread(_playback_call, pipeline, target, pipeline.update)
    return playback_status(target, player)


@router.get("/playback/{target}/frame")
async def current_frame(target: str, pipeline: PipelineService = Depends(get_pipeline)):
    """Current frame of a target as PNG (advances the cursor first)."""
    player = await asyncio.to_thread(_playback_call, pipeline, target, pipeline.open_player)
    try:
        image = await asyncio.to_thread(player.render)
    except CacheCorrupt as e:
        raise HTTPException(status_code=410, detail=e.message)
    if image is None:
        raise HTTPException(status_code=404, detail="Sequence has no frames")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return Response(
        content=buffer.getvalue(),
        media_type="image/png",
        headers={"X-Frame-Index": str(player.index)},
    )


@router.get("/cache", response_model=CacheListResponse)
async def list_cache(pipeline: PipelineService = Depends(get_pipeline)):
    """List cached frame sequences."""
    pairs = await asyncio.to_thread(pipeline.cache_store.list_with_directories)
    entries = [
        CacheEntryDTO(
            frame_directory=str(frame_directory),
            source_path=entry.source_path,
            source_modified_time=entry.source_modified_time,
            created_time=entry.created_time,
            version=entry.version,
            frame_count=entry.frame_count,
            frame_rate=entry.frame_rate,
        )
        for frame_directory, entry in pairs
    ]
    return CacheListResponse(entries=entries, total=len(entries))


@router.delete("/cache", response_model=PurgeResponse)
async def purge_cache(pipeline: PipelineService = Depends(get_pipeline)):
    """Delete every cached frame sequence. Refused while jobs are running."""
    running = [h for h in pipeline.conversion.job_repo.list() if not h.done()]
    if running:
        raise HTTPException(
            status_code=409,
            detail=f"{len(running)} job(s) running; cancel them before purging",
        )
    removed = await asyncio.to_thread(pipeline.cache_store.purge)
    return PurgeResponse(removed=removed)
