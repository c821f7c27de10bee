"""Pure domain layer: clock, enums, value objects and result DTOs."""
