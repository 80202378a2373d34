"""FastAPI main application for Student Profile Flags."""

import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from io import StringIO
from typing import List, Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, Request, Query
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from profile_flags import config
from profile_flags.flags import evaluate_flag, evaluate_student_flags, build_flag_report
from profile_flags.models import (
    EvaluateFlagRequest,
    FlagResult,
    FlagRule,
    MessageRequest,
    NameMapping,
    StudentFlagsResponse,
    StudentRecord,
    TranslatedMessage,
    TranslationResult,
    UploadResponse,
)
from profile_flags.parsers import DATASETS, load_data_dir, load_table, prepare_dataset
from profile_flags.rules import active_rules, load_rules, save_rules
from profile_flags.store import DataFrameStudentStore
from profile_flags.translation import NameTranslator

config.configure_logging()
logger = logging.getLogger(__name__)

# Shared state for the single event loop
store = DataFrameStudentStore()
translator = NameTranslator(store, ttl_seconds=config.NAME_CACHE_TTL_SECONDS)
flag_rules: List[FlagRule] = []


@asynccontextmanager
async def lifespan(app: FastAPI):
    loaded = load_data_dir(config.DATA_DIR, store)
    logger.info("Startup datasets: %s", loaded or "none")
    flag_rules[:] = load_rules(config.FLAG_RULES_PATH)
    yield


app = FastAPI(title="Student Profile Flags", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Override default exception handlers to return JSON (register specific handlers first)
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s", request.url.path)
    error_detail = str(exc)
    if config.DEBUG:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


async def find_student(student_id: str) -> Optional[StudentRecord]:
    """Look a student up by internal identifier, then by student number."""
    student = await store.get_student(student_id)
    if student is not None:
        return student
    for candidate in await store.all_students():
        if candidate.student_number == student_id:
            return candidate
    return None


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/upload/{dataset}", response_model=UploadResponse)
async def upload_dataset(dataset: str, file: UploadFile = File(...)):
    """Upload a CSV/Excel export and replace a dataset with it."""
    if dataset not in DATASETS:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown dataset '{dataset}'. Expected one of: {', '.join(DATASETS)}"
        )

    file_bytes = await file.read()
    if len(file_bytes) > config.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {config.MAX_UPLOAD_SIZE_MB}MB"
        )

    filename = file.filename or ''
    if not filename.lower().endswith((".csv", ".xlsx")):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload a CSV or Excel file (.csv, .xlsx)"
        )

    try:
        raw_df = load_table(file_bytes, filename)
        df = prepare_dataset(raw_df, dataset)
    except ValueError as e:
        logger.warning("Rejected %s upload %s: %s", dataset, filename, e)
        raise HTTPException(status_code=400, detail=str(e))

    if df.empty:
        raise HTTPException(status_code=400, detail=f"No {dataset} records found in the uploaded file.")

    store.load(dataset, df)
    if dataset == 'students':
        await translator.refresh_cache()

    return UploadResponse(
        success=True,
        message=f"Successfully loaded {len(df)} {dataset} records",
        dataset=dataset,
        record_count=len(df)
    )


@app.get("/students/search", response_model=List[NameMapping])
async def search_students(q: str = Query(""), limit: int = Query(10, ge=1, le=100)):
    """Search-as-you-type over student names."""
    return await translator.search_students_by_name(q, limit)


@app.get("/students/{student_id}/flags", response_model=StudentFlagsResponse)
async def get_student_flags(student_id: str):
    """Flags raised by the active rules for one student, by profile section."""
    student = await find_student(student_id)
    if student is None:
        raise HTTPException(status_code=404, detail=f"Student '{student_id}' not found")

    sections = await evaluate_student_flags(student, flag_rules, store)
    return StudentFlagsResponse(
        student_id=student.id,
        student_name=student.full_name,
        sections=sections
    )


@app.post("/flags/evaluate", response_model=FlagResult)
async def evaluate_rule(request: EvaluateFlagRequest):
    """Evaluate one rule against one student, ignoring the rule's filters."""
    student = await find_student(request.student_id)
    if student is None:
        raise HTTPException(status_code=404, detail=f"Student '{request.student_id}' not found")
    return await evaluate_flag(student, request.rule, store)


@app.get("/flag-rules", response_model=List[FlagRule])
async def get_flag_rules():
    return flag_rules


@app.put("/flag-rules", response_model=List[FlagRule])
async def replace_flag_rules(rules: List[FlagRule]):
    """Replace the whole rule list and persist it."""
    ids = [rule.id for rule in rules]
    if len(ids) != len(set(ids)):
        raise HTTPException(status_code=400, detail="Flag rule ids must be unique")

    save_rules(config.FLAG_RULES_PATH, rules)
    flag_rules[:] = rules
    return flag_rules


@app.get("/flags/report.csv")
async def download_flag_report():
    """Download every raised flag as CSV."""
    students = await store.all_students()
    if not students:
        raise HTTPException(status_code=404, detail="No students loaded")

    report = await build_flag_report(students, active_rules(flag_rules), store)

    output = StringIO()
    report.to_csv(output, index=False)
    output.seek(0)

    stamp = datetime.now().strftime('%Y-%m-%d')
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=student_flags_{stamp}.csv"
        }
    )


@app.post("/translate/names-to-ids", response_model=TranslationResult)
async def translate_names(request: MessageRequest):
    return await translator.translate_names_to_ids(request.message)


@app.post("/translate/ids-to-names", response_model=TranslatedMessage)
async def translate_ids(request: MessageRequest):
    translated = await translator.translate_ids_to_names(request.message)
    return TranslatedMessage(translated_message=translated)


@app.post("/cache/refresh")
async def refresh_name_cache():
    """Force a rebuild of the name translation cache."""
    await translator.refresh_cache()
    mappings = await translator.get_all_mappings()
    return {"status": "ok", "cached_students": len(mappings)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
