from enum import Enum

class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PHARMACIST = "pharmacist"
    LAB_TECHNICIAN = "lab_technician"
    STAFF = "staff"
    ADMIN = "admin"
    EXTERNAL_REQUESTER = "external_requester"
