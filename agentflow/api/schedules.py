from fastapi import APIRouter, Depends, status

from agentflow.api.deps import get_services
from agentflow.container import ServiceContainer
from agentflow.schemas.schedule import Schedule, ScheduleCreate, ScheduleUpdate, UpcomingRuns

router = APIRouter()

@router.post("/", response_model=Schedule, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    schedule_in: ScheduleCreate,
    services: ServiceContainer = Depends(get_services)
):
    return await services.schedules.create_schedule(
        schedule_in.workflow_id,
        schedule_in.cron_expression,
        schedule_in.timezone,
        schedule_in.enabled,
    )

@router.patch("/{schedule_id}", response_model=Schedule)
async def update_schedule(
    schedule_id: str,
    schedule_in: ScheduleUpdate,
    services: ServiceContainer = Depends(get_services)
):
    return await services.schedules.update_schedule(schedule_id, schedule_in.model_dump(exclude_unset=True))

@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    schedule_id: str,
    services: ServiceContainer = Depends(get_services)
):
    await services.schedules.delete_schedule(schedule_id)

@router.post("/{schedule_id}/run")
async def run_schedule_now(
    schedule_id: str,
    services: ServiceContainer = Depends(get_services)
):
    dispatched = await services.schedules.run_now(schedule_id)
    return {"schedule_id": schedule_id, "dispatched": dispatched}

@router.get("/{schedule_id}/upcoming", response_model=UpcomingRuns)
async def upcoming_runs(
    schedule_id: str,
    count: int = 5,
    services: ServiceContainer = Depends(get_services)
):
    runs = await services.schedules.upcoming_runs(schedule_id, min(max(count, 1), 50))
    return UpcomingRuns(schedule_id=schedule_id, runs=runs)
