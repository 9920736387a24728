class CV:
  # Speed
  MPH_TO_KPH = 1.609344
  KPH_TO_MPH = 1. / MPH_TO_KPH
  MS_TO_KPH = 3.6
  MS_TO_MPH = MS_TO_KPH * KPH_TO_MPH

  # Distance
  METERS_TO_FEET = 3.28084
  METERS_TO_MILES = 1. / 1609.344
