from .recognition_attempt import RecognitionAttempt
