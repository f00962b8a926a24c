from services.session_store import SessionStore
from services.job_tracker import JobTracker
from services.text_optimizer import TextOptimizer
from services.grading import OpenEndedGrader
from services.study_service import StudyService

__all__ = [
    'SessionStore',
    'JobTracker',
    'TextOptimizer',
    'OpenEndedGrader',
    'StudyService'
]
