from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from siteguard.db import get_db
from siteguard.models import Camera, Project
from siteguard.schemas.video import CameraIn, CameraOut, ProjectIn, ProjectOut

router = APIRouter(tags=["sites"])


def _project_to_out(project: Project) -> ProjectOut:
    return ProjectOut(
        id=project.id,
        name=project.name,
        location=project.location,
        start_date=project.start_date,
        end_date=project.end_date,
        status=project.status,
        created_at=project.created_at,
        camera_count=len(project.cameras),
    )


def _camera_to_out(camera: Camera) -> CameraOut:
    return CameraOut(
        id=camera.id,
        name=camera.name,
        rtsp_url=camera.rtsp_url,
        project_id=camera.project_id,
        status=camera.status,
        location_description=camera.location_description,
        created_at=camera.created_at,
    )


def _get_project(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _get_camera(db: Session, camera_id: str) -> Camera:
    camera = db.get(Camera, camera_id)
    if not camera:
        raise HTTPException(status_code=404, detail="Camera not found")
    return camera


def _check_project_link(db: Session, project_id: str | None) -> None:
    if project_id and not db.get(Project, project_id):
        raise HTTPException(status_code=400, detail="Linked project does not exist")


@router.get("/projects", response_model=list[ProjectOut])
def list_projects(db: Session = Depends(get_db)) -> list[ProjectOut]:
    rows = db.execute(select(Project).order_by(desc(Project.created_at))).scalars().all()
    return [_project_to_out(p) for p in rows]


@router.post("/projects", response_model=ProjectOut, status_code=201)
def create_project(body: ProjectIn, db: Session = Depends(get_db)) -> ProjectOut:
    project = Project(id=str(uuid.uuid4()), **body.model_dump(mode="json", exclude={"start_date", "end_date"}))
    project.start_date = body.start_date
    project.end_date = body.end_date
    db.add(project)
    db.commit()
    db.refresh(project)
    return _project_to_out(project)


@router.get("/projects/{project_id}", response_model=ProjectOut)
def get_project(project_id: str, db: Session = Depends(get_db)) -> ProjectOut:
    return _project_to_out(_get_project(db, project_id))


@router.put("/projects/{project_id}", response_model=ProjectOut)
def update_project(project_id: str, body: ProjectIn, db: Session = Depends(get_db)) -> ProjectOut:
    project = _get_project(db, project_id)
    project.name = body.name
    project.location = body.location
    project.start_date = body.start_date
    project.end_date = body.end_date
    project.status = body.status.value
    db.commit()
    db.refresh(project)
    return _project_to_out(project)


@router.delete("/projects/{project_id}")
def delete_project(project_id: str, db: Session = Depends(get_db)) -> dict:
    project = _get_project(db, project_id)
    for camera in project.cameras:
        camera.project_id = None
    db.delete(project)
    db.commit()
    return {"deleted": project_id}


@router.get("/cameras", response_model=list[CameraOut])
def list_cameras(project_id: str | None = None, db: Session = Depends(get_db)) -> list[CameraOut]:
    stmt = select(Camera).order_by(desc(Camera.created_at))
    if project_id:
        stmt = stmt.where(Camera.project_id == project_id)
    return [_camera_to_out(c) for c in db.execute(stmt).scalars().all()]


@router.post("/cameras", response_model=CameraOut, status_code=201)
def create_camera(body: CameraIn, db: Session = Depends(get_db)) -> CameraOut:
    _check_project_link(db, body.project_id)
    camera = Camera(id=str(uuid.uuid4()), **body.model_dump(mode="json"))
    db.add(camera)
    db.commit()
    db.refresh(camera)
    return _camera_to_out(camera)


@router.get("/cameras/{camera_id}", response_model=CameraOut)
def get_camera(camera_id: str, db: Session = Depends(get_db)) -> CameraOut:
    return _camera_to_out(_get_camera(db, camera_id))


@router.put("/cameras/{camera_id}", response_model=CameraOut)
def update_camera(camera_id: str, body: CameraIn, db: Session = Depends(get_db)) -> CameraOut:
    camera = _get_camera(db, camera_id)
    _check_project_link(db, body.project_id)
    for key, value in body.model_dump(mode="json").items():
        setattr(camera, key, value)
    db.commit()
    db.refresh(camera)
    return _camera_to_out(camera)


@router.delete("/cameras/{camera_id}")
def delete_camera(camera_id: str, db: Session = Depends(get_db)) -> dict:
    camera = _get_camera(db, camera_id)
    db.delete(camera)
    db.commit()
    return {"deleted": camera_id}
