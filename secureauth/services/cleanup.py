import logging

from apscheduler.schedulers.background import BackgroundScheduler

from secureauth.services.auth import AuthService

LOGGER = logging.getLogger(__name__)

SWEEP_JOB_ID = "sweep_expired_records"


class ExpirySweeper:
    """Periodically removes expired OTP and session records.

    Reads already ignore expired records, so the sweep only reclaims space.
    """

    def __init__(self, auth_service: AuthService, interval_seconds: float) -> None:
        self._auth_service = auth_service
        self._interval_seconds = interval_seconds
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        if self._interval_seconds <= 0:
            LOGGER.info("Expiry sweeper disabled")
            return
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self._run,
            "interval",
            seconds=self._interval_seconds,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        LOGGER.info("Expiry sweeper started interval=%ss", self._interval_seconds)

    def stop(self, wait: bool = True) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        LOGGER.info("Expiry sweeper stopped")

    def run_once(self) -> tuple[int, int]:
        otps, sessions = self._auth_service.sweep_expired()
        if otps or sessions:
            LOGGER.info("Swept %s expired OTP(s) and %s expired session(s)", otps, sessions)
        return otps, sessions

    def _run(self) -> None:
        # The job stays scheduled after a failure; the next interval retries.
        try:
            self.run_once()
        except Exception:
            LOGGER.exception("Expiry sweep failed, retrying next interval")
