from .users import StudentAccount, AdminAccount
from .subjects import Subject, Room, TimeSlot, Enrollment
